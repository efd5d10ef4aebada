# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
Configuration of jax for the automatic differentiation used by the fitters.

jax is only imported when a gradient is actually requested (gradient based minimizers and formal covariances), so
importing mogpsf never pulls it in.  Whoever is about to differentiate calls :func:`ensure_jax_x64` first, which
switches jax to double precision so derivatives agree with the float64 numpy path.
"""

import logging


_LOGGER: logging.Logger = logging.getLogger(__name__)
"""
This is the logging interface for reporting status, results, issues, and other information.
"""

_jax_configured = False


def ensure_jax_x64() -> None:
    """
    Enable float64 in jax.

    Safe to call any number of times; only the first call touches the jax configuration.
    """

    global _jax_configured

    if _jax_configured:
        return

    import jax

    jax.config.update('jax_enable_x64', True)

    _LOGGER.debug("jax float64 precision enabled")
    _jax_configured = True
