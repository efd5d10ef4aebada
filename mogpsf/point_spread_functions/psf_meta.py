# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
Provides the abstract interface shared by the PSF models in this package, plus a few concrete building blocks.

A PSF model is a function :math:`z = f(x, y)` describing how a point source spreads over the pixels of a detector.  The
abstract :class:`PointSpreadFunction` lists everything a model must provide:

================================================= ======================================================================
Method/Attribute                                  Use
================================================= ======================================================================
:attr:`~PointSpreadFunction.save_residuals`       Class attribute.  When ``True``, :meth:`~PointSpreadFunction.fit`
                                                  keeps the residual statistics and the formal covariance of the fit.
:meth:`~PointSpreadFunction.__call__`             Blur a 2D image with the PSF.
:meth:`~PointSpreadFunction.apply_1d`             Blur 1D scan line(s) with a cross section of the PSF.
:meth:`~PointSpreadFunction.generate_kernel`      Sample the PSF on a square grid about its centroid, normalized to sum
                                                  to 1.
:meth:`~PointSpreadFunction.evaluate`             The height of the PSF at given x (column) and y (row) locations.
:meth:`~PointSpreadFunction.fit`                  Class method building a model from sampled data.
:attr:`~PointSpreadFunction.centroid`             The (x, y) center of the PSF.
:attr:`~PointSpreadFunction.residual_rss`         The residual sum of squares of the fit, or ``None``.
:attr:`~PointSpreadFunction.residual_mean`        The mean of the fit residuals, or ``None``.
:attr:`~PointSpreadFunction.residual_std`         The standard deviation of the fit residuals, or ``None``.
:attr:`~PointSpreadFunction.covariance`           The formal covariance of the fit parameters, or ``None``.
:meth:`~PointSpreadFunction.volume`               The total volume under the PSF.
================================================= ======================================================================

:class:`KernelBasedCallPSF`, :class:`KernelBasedApply1DPSF`, and :class:`SizedPSF` implement the image and scan line
operations in terms of :meth:`~PointSpreadFunction.evaluate` so that a concrete model (see :mod:`.gaussian_mixture`)
only needs to describe its shape.
"""

from abc import ABCMeta, abstractmethod

from typing import Optional

import numpy as np
from scipy.fft import next_fast_len

import cv2

from .._typing import ARRAY_LIKE, Real


def _fft_convolve_1d(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Convolve each 1D scan line of ``a`` with the matching kernel of ``b`` through the FFT.

    :param a: array of 1d scan lines
    :param b: array of 1d kernels
    :return: the convolved scan lines, the same length as those of ``a``
    """
    # length of the "full" convolution
    n = a.shape[-1] + b.shape[-1] - 1

    fftn = next_fast_len(n)

    convolved = np.fft.irfft(np.fft.rfft(a, n=fftn) * np.fft.rfft(b, n=fftn), n=fftn)

    # keep the "same" part
    start = (n - a.shape[-1]) // 2
    return convolved[..., start:start + a.shape[-1]]


class PointSpreadFunction(metaclass=ABCMeta):
    """
    The template every PSF model in this package implements.

    A PSF models how an optical system spreads the light from a point source over several pixels.  Concrete models can
    be evaluated at arbitrary locations, applied to images and scan lines, and fit to sampled data.

    .. note:: Because this is an ABC, you cannot create an instance of this class (it will raise a ``TypeError``)
    """

    save_residuals = False  # type: bool
    """
    Whether to keep the residual statistics and formal covariance when fitting the PSF to data.

    Computing the formal covariance requires a Jacobian of the model with respect to every parameter, which can be
    expensive for large images, so this defaults to off.  Set it to ``True`` on the class before calling
    :meth:`fit`.
    """

    @abstractmethod
    def __call__(self, image: np.ndarray) -> np.ndarray:
        """
        Blur ``image`` with the PSF.

        :param image: The image the PSF is to be applied to
        :return: The image after applying the PSF
        """

    @abstractmethod
    def apply_1d(self, image_1d: np.ndarray, direction: Optional[np.ndarray] = None,
                 step: Real = 1) -> np.ndarray:
        """
        Blur 1D scan line(s) with a cross section of the PSF.

        ``image_1d`` can be a 2D array, in which case each row is an independent scan line.  The PSF is sampled along
        ``direction`` (an (x, y) pair, or one per scan line) through its centroid.  If no direction is given then the x
        direction [1, 0] is used.

        :param image_1d: The scan line(s) to be blurred using the PSF
        :param direction: The direction for the 1D cross section of the PSF.  This should be either None, a length 2
                          array, or a shape nx2 array where n is the number of scan lines
        :param step: The spacing of the samples in the scan lines
        :return: an array containing the input after blurring with the PSF
        """

    @abstractmethod
    def generate_kernel(self) -> np.ndarray:
        """
        Sample the PSF on a square grid centered at its centroid and normalize the samples to sum to 1.

        :return: A normalized kernel of the PSF centered at the centroid
        """

    @abstractmethod
    def evaluate(self, x: ARRAY_LIKE, y: ARRAY_LIKE) -> np.ndarray:
        """
        The height of the PSF at the given locations.

        Use the callable interface to blur an image; this simply evaluates the model.

        :param x: The x (column) locations to evaluate at
        :param y: The y (row) locations to evaluate at, the same shape as ``x``
        :return: The height of the PSF with the same shape as ``x`` and ``y``
        """

    @classmethod
    @abstractmethod
    def fit(cls, x: ARRAY_LIKE, y: ARRAY_LIKE, z: ARRAY_LIKE) -> __qualname__:
        """
        Fit the PSF model to samples of the surface :math:`z = f(x, y)` and return the fit model.

        :param x: The x (column) locations of the samples
        :param y: The y (row) locations of the samples
        :param z: The sampled heights
        :return: An instance of the PSF that best fits the provided data
        """

    @property
    @abstractmethod
    def centroid(self) -> np.ndarray:
        """
        The center of the PSF as an (x, y) length 2 array.
        """

    @property
    @abstractmethod
    def residual_rss(self) -> Optional[float]:
        """
        The residual sum of squares of the fit, or ``None`` if this is not a fit or :attr:`save_residuals` was off.
        """

    @property
    @abstractmethod
    def residual_mean(self) -> Optional[float]:
        """
        The mean of the fit residuals, or ``None`` if this is not a fit or :attr:`save_residuals` was off.
        """

    @property
    @abstractmethod
    def residual_std(self) -> Optional[float]:
        """
        The standard deviation of the fit residuals, or ``None`` if this is not a fit or :attr:`save_residuals` was
        off.
        """

    @property
    @abstractmethod
    def covariance(self) -> Optional[np.ndarray]:
        """
        The formal covariance of the fit parameters, or ``None`` if this is not a fit or :attr:`save_residuals` was
        off.
        """

    @abstractmethod
    def volume(self) -> float:
        """
        The total volume under the PSF.
        """


class KernelBasedApply1DPSF(PointSpreadFunction, metaclass=ABCMeta):
    """
    Implements blurring of 1D scan lines by sampling the PSF along each scan direction.

    Concrete classes decide how long the sampled cross section should be and hand off to :meth:`apply_1d_sized`.
    """

    def apply_1d_sized(self, image_1d: np.ndarray, size: int,
                       direction: Optional[np.ndarray] = None, step: Real = 1) -> np.ndarray:
        """
        Blur 1D scan line(s) with cross sections of the PSF spanning ``size`` units.

        The PSF is evaluated along each direction through the centroid every ``step`` units from ``-size/2`` to
        ``size/2``.  The samples are normalized to sum to 1 and convolved with the matching scan line through the FFT.

        :param image_1d: The scan line(s) to be blurred using the PSF
        :param size: The extent of the cross section
        :param direction: The direction for the 1D cross section of the PSF.  This should be either None, a length 2
                          array, or a shape nx2 array where n is the number of scan lines
        :param step: The spacing of the samples in the scan lines
        :return: an array containing the input after blurring with the PSF
        """

        if direction is None:
            direction = np.array([[1, 0]])
        else:
            direction = np.atleast_2d(direction)

            if (direction.shape[1] != 2) and (direction.shape[0] == 2):
                direction = direction.T

        image_1d = np.atleast_2d(image_1d)
        number_lines = max(image_1d.shape[0], direction.shape[0])
        lines = np.broadcast_to(image_1d, (number_lines, image_1d.shape[1]))
        directions = np.broadcast_to(direction, (number_lines, 2))

        steps = np.arange(-size / 2, size / 2 + step, step)

        # (lines, samples, 2) query locations through the centroid
        queries = directions.reshape((-1, 1, 2)) * steps.reshape((1, -1, 1)) + self.centroid.reshape((1, 1, 2))

        kernels = self.evaluate(queries[..., 0], queries[..., 1])
        kernels /= kernels.sum(axis=1, keepdims=True)

        return _fft_convolve_1d(lines, kernels)


class KernelBasedCallPSF(PointSpreadFunction, metaclass=ABCMeta):
    """
    Implements blurring of 2D images by filtering with the kernel from :meth:`~PointSpreadFunction.generate_kernel`.
    """

    def __call__(self, image: np.ndarray) -> np.ndarray:
        """
        Filter ``image`` with the PSF kernel, replicating the border pixels.

        OpenCV picks a spatial or Fourier implementation of the filter depending on which is faster for the kernel.

        :param image: The image the PSF is to be applied to
        :return: The image after applying the PSF
        """

        return cv2.filter2D(image, -1, self.generate_kernel(), borderType=cv2.BORDER_REPLICATE)


class SizedPSF(PointSpreadFunction, metaclass=ABCMeta):
    """
    Adds a kernel :attr:`size` that concrete classes can determine from the width of the PSF.

    Concrete classes implement :meth:`determine_size`, and :meth:`generate_kernel` then samples a ``size`` by ``size``
    grid about the centroid.
    """

    def __init__(self, size: Optional[int] = None, **kwargs):
        """
        :param size: The size of the kernel to generate.  If ``None`` or 0 then :meth:`determine_size` is used.
        """

        self.size = 1  # type: int
        """
        The size of the kernel returned by :meth:`generate_kernel`.

        This should be odd so that the kernel is centered.
        """

        super().__init__(**kwargs)

        if not size:
            self.determine_size()
        else:
            self.size = int(size)

    @abstractmethod
    def determine_size(self) -> None:
        """
        Compute the kernel size needed to capture the PSF and store it in :attr:`size`.
        """

    def generate_kernel(self, size: Optional[int] = None) -> np.ndarray:
        r"""
        Sample the PSF on a ``size`` by ``size`` grid centered at its centroid and normalize the samples to sum to 1.

        The grid covers :math:`[x_0-size//2, x_0+size//2]` by :math:`[y_0-size//2, y_0+size//2]` with unit spacing,
        where :math:`(x_0, y_0)` is the centroid.  The kernel rows run along y and the columns along x, matching the
        layout of an image.

        :param size: The size of the kernel to generate.  Overrides the :attr:`size` attribute.
        :return: A normalized kernel of the PSF centered at the centroid
        """

        if size is None:
            size = self.size

        offsets = np.arange(size) - size // 2

        grid_x, grid_y = np.meshgrid(self.centroid[0] + offsets, self.centroid[1] + offsets)

        kernel = self.evaluate(grid_x, grid_y)
        kernel /= kernel.sum()

        return kernel
