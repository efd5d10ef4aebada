# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
mogpsf fits mixtures of 2D Gaussians to measured point spread functions.

The fitting machinery lives in :mod:`mogpsf.point_spread_functions`.  Shared configuration and small helpers live in
:mod:`mogpsf.utilities`.
"""

__version__ = "0.1.0"
