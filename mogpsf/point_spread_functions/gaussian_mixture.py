# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Provides a PSF model made of a mixture of 2D Gaussians.

The :class:`GaussianMixture` model is

.. math::
    f(x, y) = \sum_k w_k N\left(\left[\begin{array}{c} y \\ x\end{array}\right]; \boldsymbol{\mu}_k,
    \boldsymbol{\Sigma}_k\right)

where the means and covariances are expressed in (row, column) order, the same convention used by the fitters in
:mod:`.least_squares` and :mod:`.expectation_maximization`, while the PSF interface (:meth:`~GaussianMixture.evaluate`,
:attr:`~GaussianMixture.centroid`) takes x along the columns and y along the rows.

An instance can be built directly from its parameters, from the unconstrained vector used by the least squares fitter,
from the result of an EM fit, or by fitting sampled data with :meth:`~GaussianMixture.fit`.  Once built it can be
evaluated at sub-pixel locations and applied to images and scan lines like any other PSF.
"""

import logging

from typing import Optional

import numpy as np

from .psf_meta import KernelBasedCallPSF, KernelBasedApply1DPSF, SizedPSF
from .parameterization import wrap_parameters, unwrap_parameters, MixtureParameters
from .mixtures import evaluate_mixture, render_mixture
from .least_squares import LeastSquaresMixtureFitter, LeastSquaresFitterOptions
from .expectation_maximization import EMFit

from ..utilities.jax_setup import ensure_jax_x64
from .._typing import ARRAY_LIKE, NONEARRAY, Real


_LOGGER: logging.Logger = logging.getLogger(__name__)
"""
This is the logging interface for reporting status, results, issues, and other information.
"""


class GaussianMixture(KernelBasedCallPSF, KernelBasedApply1DPSF, SizedPSF):
    """
    A PSF represented by a weighted sum of full covariance 2D Gaussians.

    The weights are not normalized; they carry the flux of whatever the mixture was fit to, so :meth:`volume` is their
    sum.  Kernels produced by :meth:`generate_kernel` are always normalized to sum to 1.

    The :meth:`fit` class method fits the mixture by least squares, configured through the class attributes
    :attr:`number_of_components`, :attr:`optimizer_method`, :attr:`max_iter`, and :attr:`tolerance`.  If the class
    attribute :attr:`save_residuals` is ``True`` the fit also stores its residuals and the formal covariance of the
    unconstrained parameters.
    """

    number_of_components = 2  # type: int
    """
    The number of components :meth:`fit` uses.
    """

    optimizer_method = 'Nelder-Mead'  # type: str
    """
    The :func:`scipy.optimize.minimize` method :meth:`fit` uses.
    """

    max_iter = 5000  # type: int
    """
    The maximum number of minimizer iterations :meth:`fit` allows.
    """

    tolerance = 1e-9  # type: float
    """
    The minimizer termination tolerance :meth:`fit` uses.
    """

    def __init__(self, means: Optional[ARRAY_LIKE] = None, covariances: Optional[ARRAY_LIKE] = None,
                 weights: Optional[ARRAY_LIKE] = None, size: Optional[int] = None, **kwargs):
        """
        :param means: The component means in (row, column) order as a Kx2 array.  Defaults to a single component at
                      the origin
        :param covariances: The component covariances as a Kx2x2 array.  Defaults to the identity for each component
        :param weights: The component weights as a length K array.  Defaults to 1 for each component
        :param size: The size of the kernel to generate.  If ``None`` it is determined from the mixture
        """

        if means is None:
            means = np.zeros((1, 2))

        self.means = np.array(means, dtype=np.float64).reshape(-1, 2)  # type: np.ndarray
        """
        The component means in (row, column) order as a Kx2 array.
        """

        number_of_components = self.means.shape[0]

        if covariances is None:
            covariances = np.tile(np.eye(2), (number_of_components, 1, 1))

        self.covariances = np.array(covariances, dtype=np.float64).reshape(-1, 2, 2)  # type: np.ndarray
        """
        The component covariances in (row, column) order as a Kx2x2 array.
        """

        if weights is None:
            weights = np.ones(number_of_components)

        self.weights = np.array(weights, dtype=np.float64).ravel()  # type: np.ndarray
        """
        The component weights as a length K array.
        """

        if not (self.covariances.shape[0] == self.weights.size == number_of_components):
            raise ValueError(f'Mismatched mixture shapes: means {self.means.shape}, '
                             f'covariances {self.covariances.shape}, weights {self.weights.shape}')

        self._unconstrained = None  # type: NONEARRAY

        self._residuals = None  # type: NONEARRAY

        self._covariance = None  # type: NONEARRAY

        super().__init__(size=size, **kwargs)

    def __repr__(self) -> str:
        return (f'{self.__class__.__name__}(means={self.means.tolist()}, covariances={self.covariances.tolist()}, '
                f'weights={self.weights.tolist()}, size={self.size})')

    @classmethod
    def from_parameters(cls, parameters: MixtureParameters, size: Optional[int] = None) -> 'GaussianMixture':
        """
        Build the PSF from decoded mixture parameters, for instance the ones returned by
        :func:`.fit_psf_gaussians_least_squares`.

        :param parameters: The means, covariances, and weights
        :param size: The size of the kernel to generate
        :return: The PSF
        """

        return cls(parameters.means, parameters.covariances, parameters.weights, size=size)

    @classmethod
    def from_unconstrained(cls, par: ARRAY_LIKE, size: Optional[int] = None) -> 'GaussianMixture':
        """
        Build the PSF from an unconstrained parameter vector (see :func:`.wrap_parameters`).

        :param par: The unconstrained vector of length 6K
        :param size: The size of the kernel to generate
        :return: The PSF
        """

        par = np.array(par, dtype=np.float64)

        out = cls.from_parameters(unwrap_parameters(par), size=size)
        out._unconstrained = par

        return out

    @classmethod
    def from_em_fit(cls, em_fit: EMFit, total_flux: Real = 1.0, size: Optional[int] = None) -> 'GaussianMixture':
        """
        Build the PSF from the result of :func:`.fit_psf_gaussians_em`.

        :param em_fit: The EM fit
        :param total_flux: The sum of the image the EM fit was made to, so the weights carry its flux
        :param size: The size of the kernel to generate
        :return: The PSF
        """

        return cls.from_parameters(em_fit.to_parameters(total_flux), size=size)

    @property
    def unconstrained(self) -> np.ndarray:
        """
        The unconstrained parameter vector of this mixture.

        This is the minimizer solution when the instance came from :meth:`fit`, and is otherwise computed with
        :func:`.wrap_parameters`, which requires every weight and covariance to be above its floor.
        """

        if self._unconstrained is None:
            return wrap_parameters(self.means, self.covariances, self.weights)

        return self._unconstrained

    @property
    def residuals(self) -> NONEARRAY:
        """
        A 1D array containing residuals of the fit of this mixture to data.

        These are only populated when initialized by :meth:`fit` and when the class attribute :attr:`save_residuals`
        is set to true.
        """

        return self._residuals

    @property
    def centroid(self) -> np.ndarray:
        """
        The weighted mean of the component means as an (x, y) length 2 array.
        """

        row, col = self.weights @ self.means / self.weights.sum()

        return np.array([col, row])

    @property
    def residual_mean(self) -> Optional[float]:
        """
        The mean of the post-fit residuals after fitting this PSF model to data.

        If this instance is not the result of a fit (:meth:`fit`) or if :attr:`save_residuals` is ``False`` then this
        will return None
        """

        if self.residuals is not None:
            return float(np.mean(self.residuals))
        else:
            return None

    @property
    def residual_std(self) -> Optional[float]:
        """
        The standard deviation of the post-fit residuals after fitting this PSF model to data.

        If this instance is not the result of a fit (:meth:`fit`) or if :attr:`save_residuals` is ``False`` then this
        will return None
        """

        if self.residuals is not None:
            return float(np.std(self.residuals))
        else:
            return None

    @property
    def residual_rss(self) -> Optional[float]:
        """
        The sum of squares of the post-fit residuals after fitting this PSF model to data.

        If this instance is not the result of a fit (:meth:`fit`) or if :attr:`save_residuals` is ``False`` then this
        will return None
        """

        if self.residuals is not None:
            return float(np.square(self.residuals).sum())
        else:
            return None

    @property
    def covariance(self) -> NONEARRAY:
        """
        The formal covariance of the unconstrained parameters (see :attr:`unconstrained`) after fitting this PSF model
        to data.

        If this instance is not the result of a fit (:meth:`fit`) or if :attr:`save_residuals` is ``False`` then this
        will return None.
        """

        return self._covariance

    def _half_extent(self) -> float:
        """
        The distance from the centroid to 2 sigma beyond the widest, farthest component along either axis.
        """

        offsets = np.abs(self.means - self.centroid[::-1]).max(axis=-1)
        sigmas = np.sqrt(np.linalg.eigvalsh(self.covariances).max(axis=-1))

        return float((offsets + 2 * sigmas).max())

    def determine_size(self) -> None:
        r"""
        Sets the size for the kernel based on the extent of the mixture.

        This is defined as

        .. math::
            s=\text{floor}\left(2\max_k\left(\|\boldsymbol{\mu}_k-\mathbf{c}\|_\infty + 2\sigma_k\right)+0.5\right)

        where :math:`\mathbf{c}` is the centroid and :math:`\sigma_k` is the square root of the largest eigenvalue of
        the covariance of component :math:`k`.  The size is at least 3 and is forced to be odd.
        """

        half_extent = self._half_extent()

        if np.isfinite(half_extent):
            self.size = max(int(2 * half_extent + 0.5), 3)

            # make sure its odd
            if (self.size % 2) == 0:
                self.size += 1
        else:
            self.size = 3

    def apply_1d(self, image_1d: np.ndarray, direction: Optional[np.ndarray] = None,
                 step: Real = 1) -> np.ndarray:
        """
        Blur 1D scan line(s) with cross sections of the mixture through its centroid.

        ``image_1d`` can be a 2D array, in which case each row is an independent scan line.  The cross section is taken
        along ``direction`` (x, y), which defaults to [1, 0].

        :param image_1d: The scan line(s) to be blurred using the PSF
        :param direction: The direction for the 1D cross section of the PSF.  This should be either None, a length 2
                          array, or a shape nx2 array where n is the number of scan lines
        :param step: The spacing of the samples in the scan lines
        :return: an array containing the input after blurring with the PSF
        """

        size = max(int(2 * self._half_extent() + 0.5), 3)

        # resize so that half the size is evenly divisible by step
        size = step * (((size / 2) // step) + 1) * 2

        return self.apply_1d_sized(image_1d, size, direction, step)

    def volume(self) -> float:
        """
        The volume under the mixture, which is the sum of the weights since each component integrates to 1.
        """

        return float(self.weights.sum())

    def evaluate(self, x: ARRAY_LIKE, y: ARRAY_LIKE) -> np.ndarray:
        """
        Evaluate the mixture at the given x (column) and y (row) locations.

        :param x: The x (column) locations to evaluate at
        :param y: The y (row) locations to evaluate at
        :return: The height of the PSF with the broadcast shape of ``x`` and ``y``
        """

        x, y = np.broadcast_arrays(np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64))

        return evaluate_mixture(np.stack([y, x], axis=-1), self.means, self.covariances, self.weights)

    def compute_jacobian(self, x: ARRAY_LIKE, y: ARRAY_LIKE) -> np.ndarray:
        r"""
        The Jacobian of the mixture with respect to its unconstrained parameters.

        .. math::
            \mathbf{J} = \frac{\partial f(x, y)}{\partial \mathbf{p}}

        This is computed with forward-mode automatic differentiation in jax through :func:`.render_mixture`.

        :param x: The x (column) locations as a length n array
        :param y: The y (row) locations as a length n array
        :return: The Jacobian as an nx6K array
        """

        ensure_jax_x64()

        import jax
        import jax.numpy as jnp

        locations = np.column_stack([np.ravel(y), np.ravel(x)]).astype(np.float64)

        def model(par):
            return render_mixture(par, locations, xp=jnp)

        return np.asarray(jax.jacfwd(model)(jnp.asarray(self.unconstrained)), dtype=np.float64)

    @classmethod
    def fit(cls, x: ARRAY_LIKE, y: ARRAY_LIKE, z: ARRAY_LIKE) -> 'GaussianMixture':
        r"""
        Fit a mixture of :attr:`number_of_components` Gaussians to the surface :math:`z = f(x, y)` by least squares.

        The fit is done by :meth:`.LeastSquaresMixtureFitter.fit_points` from its default starting point, so
        negative values of ``z`` are treated as 0 (with a warning).  If the minimizer reports that it did not converge a
        warning is logged and the best point found is used.

        If :attr:`save_residuals` is ``True`` then the residuals are stored and the formal covariance of the
        unconstrained parameters is computed as

        .. math::
            \mathbf{P} = \left(\mathbf{J}^T\mathbf{J}\right)^{+}\sigma_r^2

        where :math:`\sigma_r` is the standard deviation of the residuals.

        :param x: The x (column) locations of the samples
        :param y: The y (row) locations of the samples
        :param z: The sampled heights
        :return: The fit PSF
        :raises ValueError: If the inputs do not have the same number of elements or z has no positive values
        """

        x = np.asarray(x, dtype=np.float64).ravel()
        y = np.asarray(y, dtype=np.float64).ravel()
        z = np.asarray(z, dtype=np.float64).ravel()

        if not (x.size == y.size == z.size):
            raise ValueError(f'x, y, and z must have the same number of elements. Got {x.size}, {y.size}, {z.size}')

        options = LeastSquaresFitterOptions(number_of_components=cls.number_of_components, tolerance=cls.tolerance,
                                            max_iterations=cls.max_iter, method=cls.optimizer_method)

        result = LeastSquaresMixtureFitter(options).fit_points(np.column_stack([y, x]), z)

        if not result.optimizer_result.success:
            _LOGGER.warning(f'The mixture fit did not converge: {result.optimizer_result.message}')

        out = cls.from_unconstrained(result.optimizer_result.x)

        if cls.save_residuals:
            out._residuals = z - out.evaluate(x, y)

            jacobian = out.compute_jacobian(x, y)

            # assume a single uncertainty for all measurements
            out._covariance = np.linalg.pinv(jacobian.T @ jacobian) * out.residual_std ** 2

        return out
