
import logging

import numpy as np

import matplotlib.pyplot as plt

from mogpsf.point_spread_functions import (RawPSFComponents, psf_at_point, location_grid, evaluate_mixture,
                                           covariance_from_ellipse, fit_psf_gaussians_least_squares,
                                           fit_psf_gaussians_em, GaussianMixture, clamp_negative)


def make_components(rnrow: int = 31, rncol: int = 31) -> RawPSFComponents:
    """
    Builds a synthetic psField style calibration whose PSF is a narrow core plus a broad wing that grows across the
    detector.

    :param rnrow: the number of rows in an eigenimage
    :param rncol: the number of columns in an eigenimage
    :return: the synthetic calibration
    """

    grid = location_grid((rnrow, rncol))

    core = evaluate_mixture(grid, [[0, 0]], [covariance_from_ellipse(0.8, 0.3, 1.5)], [1])
    wing = evaluate_mixture(grid, [[0.5, -0.5]], [covariance_from_ellipse(0.6, 1.0, 4.0)], [1])

    # the eigenimages are stored column major, one per column
    eigenimages = np.column_stack([core.ravel(order='F'), wing.ravel(order='F')])

    # constant core, wing weight linear in row and column
    coefficients = np.zeros((2, 2, 2))
    coefficients[0, 0] = [1.0, 0.1]
    coefficients[1, 0, 1] = 0.2
    coefficients[0, 1, 1] = 0.1

    return RawPSFComponents(eigenimages, rnrow, rncol, coefficients)


if __name__ == "__main__":

    logging.basicConfig(level=logging.INFO)

    components = make_components()

    psf = psf_at_point(1200.5, 800.25, components)

    # least squares with the gradient from jax
    ls_fit = fit_psf_gaussians_least_squares(psf, number_of_components=2, method='BFGS')

    # EM, scaled back to the flux of the image
    em_fit = fit_psf_gaussians_em(psf)
    em_model = GaussianMixture.from_em_fit(em_fit, total_flux=clamp_negative(psf).sum())

    grid = location_grid(psf.shape)
    ls_image = evaluate_mixture(grid, ls_fit.means, ls_fit.covariances, ls_fit.weights)
    em_image = em_model.evaluate(grid[..., 1], grid[..., 0])

    fig, axes = plt.subplots(2, 3, figsize=(12, 8))

    for ax, image, title in zip(axes[0], [psf, ls_image, em_image], ['raw PSF', 'least squares', 'EM']):
        ax.imshow(image, interpolation='none')
        ax.set_title(title)

    for ax, image, title in zip(axes[1, 1:], [ls_image, em_image], ['least squares residual', 'EM residual']):
        im = ax.imshow(psf - image, cmap='RdBu', interpolation='none')
        fig.colorbar(im, ax=ax)
        ax.set_title(title)

    axes[1, 0].semilogy(ls_fit.optimizer_result.objective_history)
    axes[1, 0].set_xlabel('iteration')
    axes[1, 0].set_title('least squares objective')

    plt.show()
