# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Reconstructs the raw (pixelized) PSF at a location in a detector from its calibration eigenimages.

The calibration describes the PSF everywhere in the detector as a weighted sum of :math:`K` fixed eigenimages whose
weights vary smoothly with position as a bivariate polynomial

.. math::
    w_k(r, c) = \sum_{i=0}^{n_r-1}\sum_{j=0}^{n_c-1} C_{ijk} \left(s(r - 1)\right)^i \left(s(c - 1)\right)^j

where :math:`r` and :math:`c` are the 1-based row and column of the point source (the polynomial itself expects
0-based coordinates, hence the shift), :math:`C` is the coefficient tensor, and :math:`s` is :data:`RCS`, a fixed
scale keeping the polynomial terms well conditioned.  The reconstructed PSF image is then

.. math::
    \mathbf{P}(r, c) = \sum_k w_k(r, c)\mathbf{E}_k

This follows the SDSS psField convention (see ``sdss_psf_at_points`` in astrometry.net).  Reading the psField files
themselves is left to the caller.
"""

from dataclasses import dataclass

import numpy as np

from .._typing import ARRAY_LIKE, DOUBLE_ARRAY, Real


RCS: float = 0.001
"""
The coordinate scaling applied to the row and column before evaluating the weight polynomial.
"""


def _read_only_copy(array: ARRAY_LIKE, ndim: int, name: str) -> DOUBLE_ARRAY:
    out = np.array(array, dtype=np.float64)

    if out.ndim != ndim:
        raise ValueError(f'{name} must be {ndim}D. Got shape {out.shape}')

    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class RawPSFComponents:
    """
    Everything from a psField file needed to compute the raw PSF at a point.

    Instances are immutable (the arrays are copied and flagged read only) so a single instance can be shared by any
    number of concurrent reconstructions.
    """

    eigenimages: DOUBLE_ARRAY
    """
    The flattened eigenimages as a (rnrow*rncol, K) array, one eigenimage per column.

    Each column is flattened in column-major (Fortran) order, that is the row index of the eigenimage varies fastest.
    """

    rnrow: int
    """
    The number of rows in an eigenimage.
    """

    rncol: int
    """
    The number of columns in an eigenimage.
    """

    coefficients: DOUBLE_ARRAY
    """
    The coefficients of the weight polynomial as a (nrow_b, ncol_b, K) array.
    """

    def __post_init__(self):
        eigenimages = _read_only_copy(self.eigenimages, 2, 'eigenimages')
        coefficients = _read_only_copy(self.coefficients, 3, 'coefficients')

        if eigenimages.shape[1] != coefficients.shape[2]:
            raise ValueError(f'The number of eigenimages ({eigenimages.shape[1]}) does not match the number of '
                             f'coefficient arrays ({coefficients.shape[2]})')

        if eigenimages.shape[0] != self.rnrow * self.rncol:
            raise ValueError(f'The eigenimages have {eigenimages.shape[0]} pixels but rnrow*rncol is '
                             f'{self.rnrow * self.rncol}')

        # frozen dataclass, so bypass __setattr__ to store the validated copies
        object.__setattr__(self, 'eigenimages', eigenimages)
        object.__setattr__(self, 'coefficients', coefficients)
        object.__setattr__(self, 'rnrow', int(self.rnrow))
        object.__setattr__(self, 'rncol', int(self.rncol))

    @property
    def number_of_eigenimages(self) -> int:
        """
        The number of eigenimages (K)
        """
        return self.eigenimages.shape[1]

    def psf_at_point(self, row: Real, col: Real) -> DOUBLE_ARRAY:
        """
        Compute the raw PSF image for a point source at the given location.

        See :func:`psf_at_point`.
        """
        return psf_at_point(row, col, self)


def eigenimage_weights(row: Real, col: Real, components: RawPSFComponents) -> DOUBLE_ARRAY:
    """
    Evaluate the weight polynomial for each eigenimage at a location.

    :param row: The 1-based row of the point source (may be fractional)
    :param col: The 1-based column of the point source (may be fractional)
    :param components: The raw PSF calibration
    :return: The weight of each eigenimage as a length K array
    """

    nrow_b, ncol_b, _ = components.coefficients.shape

    row_terms = ((row - 1) * RCS) ** np.arange(nrow_b)
    col_terms = ((col - 1) * RCS) ** np.arange(ncol_b)

    return np.einsum('ijk,i,j->k', components.coefficients, row_terms, col_terms)


def psf_at_point(row: Real, col: Real, components: RawPSFComponents) -> DOUBLE_ARRAY:
    """
    Compute the raw PSF image for a point source at (row, col) from the calibration eigenimages.

    The eigenimages are combined with the weights from :func:`eigenimage_weights` and the result is reshaped to
    ``(rnrow, rncol)`` in column-major order, matching how the eigenimage columns are flattened.

    This is a pure function of its inputs.

    :param row: The 1-based row of the point source (may be fractional)
    :param col: The 1-based column of the point source (may be fractional)
    :param components: The raw PSF calibration
    :return: An rnrow x rncol image of the PSF at (row, col)
    """

    weights = eigenimage_weights(row, col, components)

    psf = components.eigenimages @ weights

    return psf.reshape((components.rnrow, components.rncol), order='F')
