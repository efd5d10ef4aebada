# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Fits a 3 component mixture of 2D Gaussians to a PSF image with Expectation-Maximization (EM).

The PSF is continuous valued, but we fit it as though each pixel location :math:`\mathbf{x}_n` had been observed with
a frequency proportional to the PSF value there.  Normalizing the image gives a probability mass
:math:`p_n` over the pixels, and each EM iteration

1. computes the posterior responsibility :math:`\gamma_{nk}` of each component for each pixel (E-step),
2. forms the weighted responsibilities :math:`z_{nk} = \gamma_{nk}p_n` and re-estimates the mixture weights
   :math:`w_k \propto \sum_n z_{nk}` and the :math:`z`-weighted mean and covariance of each component (M-step).

Convergence is judged on the mean squared error between the mixture density and :math:`p_n`.  EM maximizes a
likelihood, not the squared error, so once it has converged a single scale

.. math::
    s = \frac{\sum_n f(\mathbf{x}_n)p_n}{\sum_n f(\mathbf{x}_n)^2}

is fit in closed form to best match the mixture to the data in the least squares sense.  Mixing the two losses is
admittedly incoherent, but EM is considerably faster than the direct least squares fit of :mod:`.least_squares`.

The number of components is fixed at 3 and the starting point is hard coded (see :meth:`EMMixtureFitter.initial_mixture`).
"""

import logging
import warnings

from copy import deepcopy
from dataclasses import dataclass

from typing import NamedTuple, Optional, Tuple

import numpy as np
from scipy.linalg import LinAlgError
from scipy.special import logsumexp
from scipy.stats import multivariate_normal

from .parameterization import MixtureParameters
from .mixtures import location_grid
from .least_squares import clamp_negative

from ..utilities.options import UserOptions
from ..utilities.mixin_classes import UserOptionConfigured, AttributePrinting
from .._typing import ARRAY_LIKE, DOUBLE_ARRAY, Real


_LOGGER: logging.Logger = logging.getLogger(__name__)
"""
This is the logging interface for reporting status, results, issues, and other information.
"""


EM_COMPONENTS: int = 3
"""
The number of components fit by EM.
"""


class GaussianMixtureModel(AttributePrinting):
    """
    The mutable state of a full covariance mixture of 2D Gaussians, with the posterior computations EM needs.

    Each fit works on its own instance so that independent fits never share state.
    """

    def __init__(self, means: ARRAY_LIKE, covariances: ARRAY_LIKE, weights: ARRAY_LIKE):
        """
        :param means: The component means as a Kx2 array
        :param covariances: The component covariances as a Kx2x2 array
        :param weights: The component weights as a length K array
        """

        self.means = np.array(means, dtype=np.float64).reshape(-1, 2)  # type: np.ndarray
        """
        The component means as a Kx2 array
        """

        self.covariances = np.array(covariances, dtype=np.float64).reshape(-1, 2, 2)  # type: np.ndarray
        """
        The component covariances as a Kx2x2 array
        """

        self.weights = np.array(weights, dtype=np.float64).ravel()  # type: np.ndarray
        """
        The component weights as a length K array
        """

        if not (self.means.shape[0] == self.covariances.shape[0] == self.weights.size):
            raise ValueError(f'Mismatched mixture shapes: means {self.means.shape}, '
                             f'covariances {self.covariances.shape}, weights {self.weights.shape}')

    @property
    def number_of_components(self) -> int:
        """
        The number of components in the mixture
        """
        return self.weights.size

    def log_densities(self, x: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        """
        The log density of each (unweighted) component at each location.

        :param x: The locations as an nx2 array
        :return: The log densities as an nxK array
        """

        return np.column_stack([np.atleast_1d(multivariate_normal.logpdf(x, mean=mean, cov=covariance))
                                for mean, covariance in zip(self.means, self.covariances)])

    def posterior(self, x: DOUBLE_ARRAY) -> Tuple[DOUBLE_ARRAY, DOUBLE_ARRAY]:
        """
        Compute the posterior responsibility of each component for each location.

        :param x: The locations as an nx2 array
        :return: The responsibilities (rows sum to 1) and the component log densities, both as nxK arrays
        """

        log_densities = self.log_densities(x)

        with np.errstate(divide='ignore'):
            weighted = log_densities + np.log(self.weights)

        responsibilities = np.exp(weighted - logsumexp(weighted, axis=1, keepdims=True))

        return responsibilities, log_densities

    def evaluate(self, x: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        """
        Evaluate the weighted mixture density at each location.

        :param x: The locations as an nx2 array
        :return: The density as a length n array
        """

        return np.exp(self.log_densities(x)) @ self.weights

    def copy(self) -> 'GaussianMixtureModel':
        """
        Return an independent copy of this mixture.
        """
        return deepcopy(self)


class EMFit(NamedTuple):
    """
    The result of an EM mixture fit.
    """

    gmm: GaussianMixtureModel
    """
    The fit mixture, normalized to match the PSF scaled to a total of 1
    """

    scale: float
    """
    The least squares scale between the fit mixture density and the normalized PSF
    """

    def to_parameters(self, total_flux: Real = 1.0) -> MixtureParameters:
        """
        Express the fit as mixture parameters in the units of the original image.

        :param total_flux: The sum of the (clamped) image the mixture was fit to
        :return: The means, covariances, and weights, with the weights multiplied by the scale and the total flux
        """

        return MixtureParameters(self.gmm.means.copy(), self.gmm.covariances.copy(),
                                 self.gmm.weights * self.scale * total_flux)


@dataclass
class EMFitterOptions(UserOptions):
    """
    The options for :class:`EMMixtureFitter`.
    """

    tolerance: float = 1e-9
    """
    Stop once the change in mean squared error between iterations is below this.
    """

    max_iterations: int = 500
    """
    The maximum number of EM iterations.  Reaching this issues a warning but the fit is still returned.
    """

    minimum_weight: float = 1e-6
    """
    Components whose updated weight is at or below this are considered collapsed and their mean and covariance are
    not updated.
    """

    verbose: bool = False
    """
    Log the error after every iteration.
    """


class EMMixtureFitter(UserOptionConfigured[EMFitterOptions], AttributePrinting, EMFitterOptions):
    """
    Fits a 3 component mixture of 2D Gaussians to a PSF image with weighted-data EM.

    Each call to :meth:`fit` is independent; no state is carried between fits.
    """

    def __init__(self, options: Optional[EMFitterOptions] = None):
        """
        :param options: the options to configure the class with
        """
        super().__init__(EMFitterOptions, options=options)

    @staticmethod
    def initial_mixture(locations: DOUBLE_ARRAY, target: DOUBLE_ARRAY) -> GaussianMixtureModel:
        r"""
        Build the hard coded EM starting point.

        The first two components both start at the origin, with covariances :math:`\sqrt{2}\mathbf{I}` and
        :math:`2\mathbf{I}`.  The third starts at (0.2, 0.2) with the target weighted second moment of the
        locations (about the origin) as its covariance.  The weights start uniform.

        :param locations: The locations as an nx2 array
        :param target: The normalized PSF mass at the locations as a length n array
        :return: The starting mixture
        """

        origin = np.zeros(2)

        means = np.array([origin, -origin, [0.2, 0.2]])

        covariances = np.array([np.sqrt(2) * np.eye(2),
                                2 * np.eye(2),
                                locations.T @ (locations * target[:, None])])

        weights = np.full(EM_COMPONENTS, 1 / EM_COMPONENTS)

        return GaussianMixtureModel(means, covariances, weights)

    @staticmethod
    def _posterior(gmm: GaussianMixtureModel, locations: DOUBLE_ARRAY) -> Tuple[DOUBLE_ARRAY, DOUBLE_ARRAY]:
        """
        Compute the posterior of the mixture, reporting a degenerate component covariance as a divergence.
        """

        try:
            return gmm.posterior(locations)
        except LinAlgError as err:
            raise FloatingPointError('Singular component covariance in the mixture PSF fit.') from err

    def fit(self, psf: ARRAY_LIKE) -> EMFit:
        """
        Fit the mixture to a PSF image.

        Negative pixels are set to 0 (with a warning) and the image is normalized to sum to 1 before fitting.  The
        caller's image is not modified.

        :param psf: The PSF image as a 2D array
        :return: The fit mixture and the least squares scale
        :raises ValueError: If the image is not 2D or has no positive values
        :raises FloatingPointError: If the error becomes NaN or a component covariance becomes singular during the
                                    iteration
        """

        psf = clamp_negative(psf)
        if psf.ndim != 2:
            raise ValueError(f'The psf must be a 2D image. Got shape {psf.shape}')

        psf_scale = psf.sum()
        if not psf_scale > 0:
            raise ValueError('The psf has no positive values to fit')

        locations = location_grid(psf.shape).reshape(-1, 2)
        target = psf.ravel() / psf_scale

        gmm = self.initial_mixture(locations, target)

        last_err = np.inf
        converged = False

        posterior = self._posterior(gmm, locations)[0]

        for iteration in range(1, self.max_iterations + 1):
            z = posterior * target[:, None]
            z_sum = z.sum(axis=0)

            new_weights = z_sum / z_sum.sum()
            gmm.weights = new_weights

            for component in range(gmm.number_of_components):
                if new_weights[component] > self.minimum_weight:
                    component_z = z[:, component]

                    new_mean = (locations * component_z[:, None]).sum(axis=0) / z_sum[component]
                    centered = locations - new_mean

                    gmm.means[component] = new_mean
                    gmm.covariances[component] = centered.T @ (centered * component_z[:, None]) / z_sum[component]
                else:
                    warnings.warn(f'Component {component} has very small probability.', RuntimeWarning)

            posterior, log_densities = self._posterior(gmm, locations)
            gmm_fit = np.exp(log_densities) @ gmm.weights

            err = np.mean(np.square(gmm_fit - target))
            err_diff = abs(last_err - err)
            last_err = err

            if self.verbose:
                _LOGGER.info(f'{iteration}: err={err} err_diff={err_diff}')

            if np.isnan(err):
                raise FloatingPointError('NaN in the mixture PSF fit.')

            if err_diff < self.tolerance:
                _LOGGER.info(f'Tolerance reached ({err_diff} < {self.tolerance}) after {iteration} iterations')
                converged = True
                break

        if not converged:
            warnings.warn(f'PSF mixture EM fit: max_iterations ({self.max_iterations}) exceeded', RuntimeWarning)

        gmm_fit = gmm.evaluate(locations)
        scale = float((gmm_fit * target).sum() / np.square(gmm_fit).sum())

        return EMFit(gmm, scale)


def fit_psf_gaussians_em(psf: ARRAY_LIKE, tolerance: float = 1e-9, max_iterations: int = 500,
                         verbose: bool = False) -> EMFit:
    """
    Fit a 3 component mixture of 2D Gaussians to a PSF image with EM.

    This is a convenience wrapper around :class:`EMMixtureFitter`.

    :param psf: The PSF image, for instance as returned by :func:`.psf_at_point`
    :param tolerance: Stop once the change in mean squared error between iterations is below this
    :param max_iterations: The maximum number of EM iterations
    :param verbose: Log the error after every iteration
    :return: The fit mixture and the least squares scale
    """

    options = EMFitterOptions(tolerance=tolerance, max_iterations=max_iterations, verbose=verbose)

    return EMMixtureFitter(options).fit(psf)
