# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This package fits mixtures of 2D Gaussians to point spread functions.

A Point Spread Function (PSF) describes how an optical system spreads the light from a point source over several
pixels.  Survey pipelines often describe their PSF as a pixelized image that varies over the detector, which is awkward
to evaluate at sub-pixel offsets or to use inside a likelihood.  A small mixture of full covariance Gaussians captures
the core and the wings of such a PSF with a handful of smooth parameters.

The package is organized as

* :mod:`.raw_psf` reconstructs the pixelized PSF at a detector location from its calibration eigenimages.
* :mod:`.parameterization` maps a mixture to and from an unconstrained vector that any minimizer can explore.
* :mod:`.mixtures` evaluates mixtures on pixel grids, with numpy or with jax for differentiation.
* :mod:`.least_squares` fits K components by minimizing the squared pixel residuals
  (:func:`fit_psf_gaussians_least_squares`).
* :mod:`.expectation_maximization` fits 3 components with weighted-data EM (:func:`fit_psf_gaussians_em`).
* :mod:`.gaussian_mixture` wraps a fit mixture in the :class:`.PointSpreadFunction` interface of :mod:`.psf_meta` so
  it can be evaluated, applied to images, and refit to sampled data.

A typical use reconstructs the raw PSF and fits it::

    >>> from mogpsf.point_spread_functions import psf_at_point, fit_psf_gaussians_least_squares, GaussianMixture
    >>> psf = psf_at_point(row, col, components)
    >>> fit = fit_psf_gaussians_least_squares(psf, number_of_components=2)
    >>> model = GaussianMixture(fit.means, fit.covariances, fit.weights)
"""

from .psf_meta import PointSpreadFunction, SizedPSF, KernelBasedCallPSF, KernelBasedApply1DPSF

from .parameterization import (MixtureParameters, wrap_parameters, unwrap_parameters, SIGMA_MIN, WEIGHT_MIN,
                               PARAMETERS_PER_COMPONENT)

from .mixtures import evaluate_mixture, location_grid, render_mixture, covariance_from_ellipse

from .raw_psf import RawPSFComponents, eigenimage_weights, psf_at_point, RCS

from .least_squares import (LeastSquaresFit, LeastSquaresFitterOptions, LeastSquaresMixtureFitter,
                            fit_psf_gaussians_least_squares, clamp_negative, default_initial_parameters)

from .expectation_maximization import (GaussianMixtureModel, EMFit, EMFitterOptions, EMMixtureFitter,
                                       fit_psf_gaussians_em)

from .gaussian_mixture import GaussianMixture


__all__ = ['PointSpreadFunction', 'SizedPSF', 'KernelBasedCallPSF', 'KernelBasedApply1DPSF',
           'MixtureParameters', 'wrap_parameters', 'unwrap_parameters', 'SIGMA_MIN', 'WEIGHT_MIN',
           'PARAMETERS_PER_COMPONENT', 'evaluate_mixture', 'location_grid', 'render_mixture', 'covariance_from_ellipse',
           'RawPSFComponents', 'eigenimage_weights', 'psf_at_point', 'RCS', 'LeastSquaresFit',
           'LeastSquaresFitterOptions', 'LeastSquaresMixtureFitter', 'fit_psf_gaussians_least_squares',
           'clamp_negative', 'default_initial_parameters', 'GaussianMixtureModel', 'EMFit', 'EMFitterOptions',
           'EMMixtureFitter', 'fit_psf_gaussians_em', 'GaussianMixture']
