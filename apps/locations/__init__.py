"""Locations app package.

Physical inventory: locations, the stands installed at them and the
boxes mounted on each stand. Boxes are the unit the scheduling core
allocates; stands are the scope for reassignment.
"""
