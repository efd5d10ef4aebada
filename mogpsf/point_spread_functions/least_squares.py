# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Fits a mixture of 2D Gaussians to a PSF image by least squares.

The fit minimizes the sum of squared pixel residuals

.. math::
    L(\mathbf{p}) = \sum_{i,j}\left(I_{ij} - f(\mathbf{x}_{ij}; \mathbf{p})\right)^2

over the unconstrained vector :math:`\mathbf{p}` of :mod:`.parameterization` using :func:`scipy.optimize.minimize`.
Any minimizer scipy provides can be used.  The default is the derivative free Nelder-Mead simplex, which copes with
the exponentials in the parameterization without any tuning.  When a gradient based minimizer is requested the
gradient is computed by forward-mode automatic differentiation with jax through the very same codec and evaluator
code used for plain evaluation.

Use
---

For a single fit, call :func:`fit_psf_gaussians_least_squares`::

    >>> from mogpsf.point_spread_functions import fit_psf_gaussians_least_squares
    >>> result, means, covariances, weights = fit_psf_gaussians_least_squares(psf, number_of_components=2)

or configure a :class:`LeastSquaresMixtureFitter` with :class:`LeastSquaresFitterOptions` and reuse it.
"""

import logging
import warnings

from dataclasses import dataclass

from typing import NamedTuple, Optional, Callable

import numpy as np
from scipy.optimize import minimize, OptimizeResult

from .parameterization import wrap_parameters, unwrap_parameters, PARAMETERS_PER_COMPONENT
from .mixtures import location_grid, render_mixture

from ..utilities.options import UserOptions
from ..utilities.mixin_classes import UserOptionConfigured, AttributePrinting
from ..utilities.jax_setup import ensure_jax_x64
from .._typing import ARRAY_LIKE, DOUBLE_ARRAY, NONEARRAY


_LOGGER: logging.Logger = logging.getLogger(__name__)
"""
This is the logging interface for reporting status, results, issues, and other information.
"""


GRADIENT_METHODS = frozenset({'cg', 'bfgs', 'newton-cg', 'l-bfgs-b', 'tnc', 'slsqp'})
"""
The :func:`scipy.optimize.minimize` methods that are given the jax gradient of the objective.

None of them are given a Hessian.  ``newton-cg`` approximates Hessian-vector products from finite differences of the
gradient.  Methods that want an explicit Hessian, such as ``trust-constr``, are left out and run without the gradient.
"""


class LeastSquaresFit(NamedTuple):
    """
    The result of a least squares mixture fit.
    """

    optimizer_result: OptimizeResult
    """
    The raw result from :func:`scipy.optimize.minimize`.

    In addition to the usual scipy fields this carries ``objective_history``, the objective value at the
    optimizer's current point after each iteration.
    """

    means: DOUBLE_ARRAY
    """
    The fit component means as a Kx2 array
    """

    covariances: DOUBLE_ARRAY
    """
    The fit component covariances as a Kx2x2 array
    """

    weights: DOUBLE_ARRAY
    """
    The fit component weights as a length K array
    """


def clamp_negative(psf: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Return a float copy of ``psf`` with negative values replaced by 0, warning if any were found.

    :param psf: The PSF values
    :return: The clamped copy
    """

    psf = np.array(psf, dtype=np.float64)

    negative = psf < 0
    if negative.any():
        warnings.warn(f'{negative.sum()} psf values are negative. Setting them to 0.', RuntimeWarning)
        psf[negative] = 0

    return psf


def default_initial_parameters(values: DOUBLE_ARRAY, locations: DOUBLE_ARRAY,
                               number_of_components: int) -> DOUBLE_ARRAY:
    r"""
    Build the default starting point for the least squares fit.

    Every component starts at the intensity weighted centroid of the data.  Component :math:`k` (counting from 1) gets
    the covariance :math:`\sqrt{2k}\mathbf{I}` so that the components start nested with increasing spread, and every
    component gets the weight :math:`1/K`.

    :param values: The (non-negative) data values as a length n array
    :param locations: The locations of the values as an nx2 array
    :param number_of_components: The number of components K
    :return: The unconstrained starting vector
    :raises ValueError: If the values have no positive mass to take a centroid of
    """

    if not values.sum() > 0:
        raise ValueError('The psf has no positive values so the default initialization is undefined')

    starting_mean = (values[:, None] * locations).sum(axis=0) / values.sum()

    means = np.tile(starting_mean, (number_of_components, 1))
    covariances = np.array([np.sqrt(2 * k) * np.eye(2) for k in range(1, number_of_components + 1)])
    weights = np.full(number_of_components, 1 / number_of_components)

    return wrap_parameters(means, covariances, weights)


@dataclass
class LeastSquaresFitterOptions(UserOptions):
    """
    The options for :class:`LeastSquaresMixtureFitter`.
    """

    number_of_components: int = 2
    """
    The number of Gaussian components K to fit.
    """

    tolerance: float = 1e-9
    """
    The termination tolerance handed to :func:`scipy.optimize.minimize`.

    scipy interprets it per method (for instance the simplex size for Nelder-Mead and the gradient norm for BFGS).
    """

    max_iterations: int = 5000
    """
    The maximum number of optimizer iterations.
    """

    method: str = 'Nelder-Mead'
    """
    The :func:`scipy.optimize.minimize` method to use.
    """

    verbose: bool = False
    """
    Log the objective and the current components after every iteration.
    """


class LeastSquaresMixtureFitter(UserOptionConfigured[LeastSquaresFitterOptions], AttributePrinting,
                                LeastSquaresFitterOptions):
    """
    Fits a K component mixture of 2D Gaussians to PSF data by least squares.

    Each call to :meth:`fit` or :meth:`fit_points` is independent; no state is carried between fits.
    """

    def __init__(self, options: Optional[LeastSquaresFitterOptions] = None):
        """
        :param options: the options to configure the class with
        """
        super().__init__(LeastSquaresFitterOptions, options=options)

    def fit(self, psf: ARRAY_LIKE, initial_parameters: NONEARRAY = None) -> LeastSquaresFit:
        """
        Fit the mixture to a PSF image.

        The image is placed on the centered grid of :func:`.location_grid`.  Negative pixels are set to 0 (with a
        warning) before fitting.  The caller's image is not modified.

        :param psf: The PSF image as a 2D array
        :param initial_parameters: An optional unconstrained starting vector of length 6K.  If ``None`` then
                                   :func:`default_initial_parameters` is used.
        :return: The fit result
        :raises ValueError: If the image is not 2D
        """

        psf = np.asarray(psf)
        if psf.ndim != 2:
            raise ValueError(f'The psf must be a 2D image. Got shape {psf.shape}')

        return self.fit_points(location_grid(psf.shape).reshape(-1, 2), psf.ravel(),
                               initial_parameters=initial_parameters)

    def fit_points(self, locations: ARRAY_LIKE, values: ARRAY_LIKE,
                   initial_parameters: NONEARRAY = None) -> LeastSquaresFit:
        """
        Fit the mixture to PSF values sampled at arbitrary locations.

        :param locations: The (row, column) offsets of the samples as an nx2 array
        :param values: The PSF values at ``locations`` as a length n array
        :param initial_parameters: An optional unconstrained starting vector of length 6K
        :return: The fit result
        :raises ValueError: If the shapes of the inputs do not agree
        """

        locations = np.asarray(locations, dtype=np.float64)
        values = clamp_negative(values).ravel()

        if locations.shape != (values.size, 2):
            raise ValueError(f'The locations must be an nx2 array matching the {values.size} values. '
                             f'Got shape {locations.shape}')

        if initial_parameters is None:
            if self.verbose:
                _LOGGER.info('Using default initialization.')
            initial_parameters = default_initial_parameters(values, locations, self.number_of_components)
        else:
            if self.verbose:
                _LOGGER.info('Using user-specified initialization.')
            initial_parameters = np.asarray(initial_parameters, dtype=np.float64)

        if initial_parameters.shape != (self.number_of_components * PARAMETERS_PER_COMPONENT,):
            raise ValueError(f'The initial parameters must have length '
                             f'{self.number_of_components * PARAMETERS_PER_COMPONENT} for '
                             f'{self.number_of_components} components. Got shape {initial_parameters.shape}')

        def evaluate_fit(par: np.ndarray) -> float:
            return float(np.square(values - render_mixture(par, locations)).sum())

        objective_history = []

        def record_iteration(par: np.ndarray) -> None:
            fit = evaluate_fit(par)
            objective_history.append(fit)

            if self.verbose:
                means, covariances, weights = unwrap_parameters(par)
                _LOGGER.info(f'iteration {len(objective_history)}: fit={fit}\n'
                             f'means={means.tolist()}\ncovariances={covariances.tolist()}\nweights={weights.tolist()}')

        optimizer_result = minimize(evaluate_fit, initial_parameters, method=self.method,
                                    jac=self._gradient(values, locations), tol=self.tolerance,
                                    callback=record_iteration, options={'maxiter': self.max_iterations})

        optimizer_result.objective_history = objective_history

        if self.verbose:
            _LOGGER.info(f'{self.method} finished after {optimizer_result.nit} iterations: '
                         f'{optimizer_result.message}')

        return LeastSquaresFit(optimizer_result, *unwrap_parameters(optimizer_result.x))

    def _gradient(self, values: DOUBLE_ARRAY, locations: DOUBLE_ARRAY) -> Optional[Callable]:
        """
        Build the gradient of the least squares objective for gradient based methods, or ``None`` otherwise.
        """

        if self.method.lower() not in GRADIENT_METHODS:
            return None

        ensure_jax_x64()

        import jax
        import jax.numpy as jnp

        def objective(par):
            return jnp.square(values - render_mixture(par, locations, xp=jnp)).sum()

        gradient = jax.jit(jax.jacfwd(objective))

        def evaluate_gradient(par: np.ndarray) -> np.ndarray:
            return np.asarray(gradient(par), dtype=np.float64)

        return evaluate_gradient


def fit_psf_gaussians_least_squares(psf: ARRAY_LIKE, initial_parameters: NONEARRAY = None,
                                    number_of_components: int = 2, tolerance: float = 1e-9,
                                    max_iterations: int = 5000, method: str = 'Nelder-Mead',
                                    verbose: bool = False) -> LeastSquaresFit:
    """
    Fit a mixture of 2D Gaussians to a PSF image by least squares.

    This is a convenience wrapper around :class:`LeastSquaresMixtureFitter`.

    :param psf: The PSF image, for instance as returned by :func:`.psf_at_point`
    :param initial_parameters: An optional unconstrained starting vector of length 6K
    :param number_of_components: The number of components K to fit
    :param tolerance: The termination tolerance for the minimizer
    :param max_iterations: The maximum number of minimizer iterations
    :param method: The :func:`scipy.optimize.minimize` method
    :param verbose: Log the progress of every iteration
    :return: The optimizer result and the fit means, covariances, and weights
    """

    options = LeastSquaresFitterOptions(number_of_components=number_of_components, tolerance=tolerance,
                                        max_iterations=max_iterations, method=method, verbose=verbose)

    return LeastSquaresMixtureFitter(options).fit(psf, initial_parameters=initial_parameters)
