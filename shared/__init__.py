"""
Shared Kernel

Base classes and value objects shared by the scheduling, location and
payment contexts. Nothing in here touches the ORM except the unit of work.
"""
