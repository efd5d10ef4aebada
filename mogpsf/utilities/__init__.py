# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This package provides the configuration layer (:mod:`.options` and :mod:`.mixin_classes`) and the jax setup helper
(:mod:`.jax_setup`) used throughout mogpsf.
"""
