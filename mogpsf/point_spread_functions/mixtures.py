# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Evaluates mixtures of 2D Gaussians on pixel grids.

The mixture density at a location :math:`\mathbf{x}` is

.. math::
    f(\mathbf{x}) = \sum_k w_k \exp\left(-\frac{1}{2}(\mathbf{x}-\boldsymbol{\mu}_k)^T\boldsymbol{\Sigma}_k^{-1}
    (\mathbf{x}-\boldsymbol{\mu}_k) - \frac{1}{2}\log|\boldsymbol{\Sigma}_k| - \log 2\pi\right)

The 2x2 inverse and determinant are written out in closed form, so every function here accepts an ``xp`` array
namespace and runs unchanged on numpy arrays or on jax arrays being differentiated.

Locations follow the convention of :func:`location_grid`: the first coordinate runs along the image rows and the
second along the image columns, both in pixels, with the origin at the geometric center of the image.
"""

from typing import Tuple

import numpy as np

from .parameterization import unwrap_parameters

from .._typing import ARRAY_LIKE, DOUBLE_ARRAY, Real


def evaluate_mixture(x: ARRAY_LIKE, means: ARRAY_LIKE, covariances: ARRAY_LIKE, weights: ARRAY_LIKE, xp=np):
    """
    Evaluate the weighted sum of the Gaussian component densities at ``x``.

    :param x: The location(s) to evaluate at as a (..., 2) array.  A single length 2 location returns a scalar
    :param means: The component means as a Kx2 array
    :param covariances: The component covariances as a Kx2x2 array
    :param weights: The (possibly unnormalized) component weights as a length K array
    :param xp: The array namespace to compute with (numpy or jax.numpy)
    :return: The mixture density with shape ``x.shape[:-1]``
    :raises ValueError: If the last axis of ``x`` is not length 2 or the component counts disagree
    """

    x = xp.asarray(x)
    means = xp.asarray(means)
    covariances = xp.asarray(covariances)
    weights = xp.asarray(weights)

    if x.shape[-1] != 2:
        raise ValueError(f'The locations must have a last axis of length 2. Got shape {x.shape}')

    if not (means.shape[0] == covariances.shape[0] == weights.shape[0]):
        raise ValueError(f'Mismatched mixture shapes: means {means.shape}, covariances {covariances.shape}, '
                         f'weights {weights.shape}')

    # (..., K, 2) offsets from each component mean
    z = x[..., None, :] - means
    z0 = z[..., 0]
    z1 = z[..., 1]

    s00 = covariances[:, 0, 0]
    s01 = covariances[:, 0, 1]
    s10 = covariances[:, 1, 0]
    s11 = covariances[:, 1, 1]

    determinant = s00 * s11 - s01 * s10

    # z^T Sigma^-1 z
    mahalanobis = (s11 * z0 * z0 - (s01 + s10) * z0 * z1 + s00 * z1 * z1) / determinant

    log_pdf = -0.5 * mahalanobis - 0.5 * xp.log(determinant) - np.log(2 * np.pi)

    return (weights * xp.exp(log_pdf)).sum(axis=-1)


def location_grid(shape: Tuple[int, int]) -> DOUBLE_ARRAY:
    """
    Build the pixel location of every cell of an image, centered on the image.

    Cell ``(i, j)`` is assigned ``(i - (rows - 1) / 2, j - (cols - 1) / 2)``, so an odd sized image has its center
    pixel at the origin and an even sized one has the origin on the corner shared by the 4 central pixels.

    :param shape: The (rows, cols) shape of the image
    :return: A (rows, cols, 2) array of locations
    """

    rows, cols = shape
    row_locations, col_locations = np.meshgrid(np.arange(rows) - (rows - 1) / 2,
                                               np.arange(cols) - (cols - 1) / 2, indexing='ij')

    return np.stack([row_locations, col_locations], axis=-1)


def render_mixture(par: ARRAY_LIKE, grid: ARRAY_LIKE, xp=np):
    """
    Evaluate a mixture expressed in its unconstrained form at every location of a grid.

    :param par: The unconstrained parameter vector (see :func:`.wrap_parameters`)
    :param grid: The (..., 2) locations to evaluate at, typically from :func:`location_grid`
    :param xp: The array namespace to compute with (numpy or jax.numpy)
    :return: The rendered mixture with shape ``grid.shape[:-1]``
    """

    means, covariances, weights = unwrap_parameters(par, xp=xp)

    return evaluate_mixture(grid, means, covariances, weights, xp=xp)


def covariance_from_ellipse(axis_ratio: Real, angle: Real, scale: Real) -> DOUBLE_ARRAY:
    r"""
    Build a 2x2 covariance matrix from the shape of its 1 sigma ellipse.

    .. math::
        \boldsymbol{\Sigma} = \mathbf{W}^T\mathbf{W}, \quad
        \mathbf{W} = s\left[\begin{array}{cc}1 & 0 \\ 0 & r\end{array}\right]\mathbf{R}^T

    where :math:`\mathbf{R}` is the rotation by ``angle``, :math:`r` is the ``axis_ratio`` and :math:`s` is the
    ``scale``.

    :param axis_ratio: The ratio of the minor to the major axis, in (0, 1]
    :param angle: The rotation of the major axis from the first coordinate axis in radians
    :param scale: The length of the major axis
    :return: The covariance matrix
    :raises ValueError: If ``scale`` is not positive or ``axis_ratio`` is not in (0, 1]
    """

    if not scale > 0:
        raise ValueError(f'scale must be positive. Got {scale}')

    if not 0 < axis_ratio <= 1:
        raise ValueError(f'axis_ratio must be in (0, 1]. Got {axis_ratio}')

    cos_angle, sin_angle = np.cos(angle), np.sin(angle)
    rotation = np.array([[cos_angle, -sin_angle],
                         [sin_angle, cos_angle]])

    shrink = np.diag([1.0, axis_ratio])

    w = scale * shrink @ rotation.T

    return w.T @ w
