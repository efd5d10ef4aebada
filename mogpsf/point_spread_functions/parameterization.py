# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Converts a mixture of 2D Gaussians to and from an unconstrained vector that can be handed to an optimizer.

A mixture of :math:`K` components

.. math::
    f(\mathbf{x}) = \sum_k w_k N(\mathbf{x}; \boldsymbol{\mu}_k, \boldsymbol{\Sigma}_k)

is only meaningful when every :math:`\boldsymbol{\Sigma}_k` is positive definite and every :math:`w_k` is positive.
To let a general purpose minimizer wander over all of :math:`\mathbb{R}^{6K}` we store, for each component, the mean,
the upper Cholesky factor :math:`\mathbf{U}` of :math:`\boldsymbol{\Sigma}_k-\boldsymbol{\Sigma}_{min}` with its
diagonal in log space, and :math:`\log(w_k - w_{min})`:

.. math::
    \left[\mu_0, \mu_1, \log U_{00}, U_{01}, \log U_{11}, \log(w_k - w_{min})\right]

Any real vector decodes to :math:`\boldsymbol{\Sigma}_k = \mathbf{U}^T\mathbf{U} + \boldsymbol{\Sigma}_{min}`, which is
positive definite, and :math:`w_k > w_{min}`.  The floors keep the components from collapsing onto a single pixel.
"""

from typing import NamedTuple, Sequence

import numpy as np
from scipy.linalg import cholesky, LinAlgError

from .._typing import ARRAY_LIKE, DOUBLE_ARRAY


SIGMA_MIN: DOUBLE_ARRAY = np.diag([0.25, 0.25])
"""
The smallest covariance (in squared pixels) a mixture component may have.
"""

WEIGHT_MIN: float = 0.05
"""
The smallest weight a mixture component may have.
"""

PARAMETERS_PER_COMPONENT: int = 6
"""
2 for the mean, 3 for the covariance and 1 for the weight.
"""


class MixtureParameters(NamedTuple):
    """
    The constrained parameters of a mixture of 2D Gaussians.

    The weights are not normalized; they carry the total flux of the image the mixture was fit to.
    """

    means: DOUBLE_ARRAY
    """
    The component means as a Kx2 array
    """

    covariances: DOUBLE_ARRAY
    """
    The component covariance matrices as a Kx2x2 array
    """

    weights: DOUBLE_ARRAY
    """
    The component weights as a length K array
    """

    @property
    def number_of_components(self) -> int:
        """
        The number of components in the mixture
        """
        return len(self.weights)


def wrap_parameters(means: Sequence[ARRAY_LIKE] | ARRAY_LIKE, covariances: Sequence[ARRAY_LIKE] | ARRAY_LIKE,
                    weights: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Convert the parameters of a mixture of 2D Gaussians into an unconstrained vector.

    :param means: The K component means (each length 2)
    :param covariances: The K component covariance matrices (each 2x2)
    :param weights: The K component weights
    :return: The unconstrained parameter vector of length 6K
    :raises ValueError: If the inputs do not describe the same number of components, if a covariance is not
                        :data:`SIGMA_MIN` plus a positive definite matrix, or if a weight is not above
                        :data:`WEIGHT_MIN`
    """

    means = np.asarray(means, dtype=np.float64).reshape(-1, 2)
    covariances = np.asarray(covariances, dtype=np.float64)
    weights = np.atleast_1d(np.asarray(weights, dtype=np.float64))

    number_of_components = weights.size
    if (means.shape[0] != number_of_components or
            covariances.shape != (number_of_components, 2, 2)):
        raise ValueError(f'Mismatched mixture shapes: means {means.shape}, covariances {covariances.shape}, '
                         f'weights {weights.shape}')

    if (weights <= WEIGHT_MIN).any():
        raise ValueError(f'All weights must be larger than {WEIGHT_MIN}. Got {weights}')

    par = np.zeros(number_of_components * PARAMETERS_PER_COMPONENT, dtype=np.float64)
    for k in range(number_of_components):
        offset = k * PARAMETERS_PER_COMPONENT

        try:
            sigma_chol = cholesky(covariances[k] - SIGMA_MIN, lower=False)
        except LinAlgError as err:
            raise ValueError(f'Covariance {k} minus the covariance floor is not positive definite') from err

        par[offset:offset + 2] = means[k]
        par[offset + 2] = np.log(sigma_chol[0, 0])
        par[offset + 3] = sigma_chol[0, 1]
        par[offset + 4] = np.log(sigma_chol[1, 1])
        par[offset + 5] = np.log(weights[k] - WEIGHT_MIN)

    return par


def unwrap_parameters(par: ARRAY_LIKE, xp=np) -> MixtureParameters:
    """
    Reverse :func:`wrap_parameters`.

    Only elementwise exponentials, products, and stacking are used so that the same code evaluates both plain numpy
    arrays and traced jax arrays (pass ``xp=jax.numpy``), letting derivatives flow through the decoding.  The
    covariance is rebuilt from its factor directly, so no Cholesky decomposition needs to be differentiated.

    :param par: The unconstrained parameter vector of length 6K
    :param xp: The array namespace to compute with (numpy or jax.numpy)
    :return: The decoded mixture parameters
    :raises ValueError: If ``par`` is not a 1D vector whose length is a positive multiple of 6
    """

    par = xp.asarray(par)

    if par.ndim != 1 or par.shape[0] == 0 or par.shape[0] % PARAMETERS_PER_COMPONENT:
        raise ValueError(f'The unconstrained vector must be 1D with a length that is a positive multiple of '
                         f'{PARAMETERS_PER_COMPONENT}. Got shape {par.shape}')

    blocks = par.reshape(-1, PARAMETERS_PER_COMPONENT)

    means = blocks[:, :2]

    u00 = xp.exp(blocks[:, 2])
    u01 = blocks[:, 3]
    u11 = xp.exp(blocks[:, 4])

    # U^T U for U = [[u00, u01], [0, u11]]
    s00 = u00 * u00 + SIGMA_MIN[0, 0]
    s01 = u00 * u01 + SIGMA_MIN[0, 1]
    s11 = u01 * u01 + u11 * u11 + SIGMA_MIN[1, 1]

    covariances = xp.stack([xp.stack([s00, s01], axis=-1),
                            xp.stack([s01, s11], axis=-1)], axis=-2)

    weights = xp.exp(blocks[:, 5]) + WEIGHT_MIN

    return MixtureParameters(means, covariances, weights)
