import warnings

from unittest import TestCase
from unittest.mock import patch

import numpy as np

from mogpsf.point_spread_functions.expectation_maximization import (GaussianMixtureModel, EMFit, EMFitterOptions,
                                                                    EMMixtureFitter, fit_psf_gaussians_em,
                                                                    EM_COMPONENTS)
from mogpsf.point_spread_functions.mixtures import location_grid, evaluate_mixture


rng = np.random.default_rng(193339)


class TestGaussianMixtureModel(TestCase):

    def setUp(self) -> None:
        self.gmm = GaussianMixtureModel([[0, 0], [1, -1]],
                                        [np.eye(2), [[2.0, 0.5], [0.5, 1.0]]],
                                        [0.25, 0.75])

        self.x = rng.normal(scale=2, size=(30, 2))

    def test_evaluate(self) -> None:

        expected = evaluate_mixture(self.x, self.gmm.means, self.gmm.covariances, self.gmm.weights)

        np.testing.assert_allclose(self.gmm.evaluate(self.x), expected)

    def test_posterior(self) -> None:

        responsibilities, log_densities = self.gmm.posterior(self.x)

        self.assertEqual(responsibilities.shape, (30, 2))
        np.testing.assert_allclose(responsibilities.sum(axis=1), 1)

        weighted = np.exp(log_densities) * self.gmm.weights
        np.testing.assert_allclose(responsibilities, weighted / weighted.sum(axis=1, keepdims=True))

    def test_copy(self) -> None:

        gmm_copy = self.gmm.copy()
        gmm_copy.means[0] = [5, 5]

        np.testing.assert_array_equal(self.gmm.means[0], [0, 0])

    def test_mismatched(self) -> None:

        with self.assertRaises(ValueError):
            GaussianMixtureModel([[0, 0]], [np.eye(2), np.eye(2)], [0.5, 0.5])


class TestEMFit(TestCase):

    def test_to_parameters(self) -> None:

        gmm = GaussianMixtureModel([[0, 0], [1, 1]], [np.eye(2), 2 * np.eye(2)], [0.4, 0.6])

        means, covariances, weights = EMFit(gmm, 1.5).to_parameters(total_flux=10)

        np.testing.assert_allclose(weights, [6.0, 9.0])
        np.testing.assert_array_equal(means, gmm.means)
        np.testing.assert_array_equal(covariances, gmm.covariances)

        # the fit itself is left alone
        np.testing.assert_array_equal(gmm.weights, [0.4, 0.6])


class TestEMMixtureFitter(TestCase):

    def setUp(self) -> None:
        self.grid = location_grid((25, 25))
        self.locations = self.grid.reshape(-1, 2)

        self.means = np.array([[-1.5, 0.0], [2.0, 1.5]])
        self.covariances = np.array([[[4.0, 0.0], [0.0, 2.5]],
                                     [[3.0, 0.5], [0.5, 2.0]]])
        self.weights = np.array([0.6, 0.4])

        self.psf = evaluate_mixture(self.grid, self.means, self.covariances, self.weights)

    def test_initial_mixture(self) -> None:

        target = self.psf.ravel() / self.psf.sum()

        gmm = EMMixtureFitter.initial_mixture(self.locations, target)

        self.assertEqual(gmm.number_of_components, EM_COMPONENTS)

        np.testing.assert_array_equal(gmm.means, [[0, 0], [0, 0], [0.2, 0.2]])
        np.testing.assert_allclose(gmm.covariances[0], np.sqrt(2) * np.eye(2))
        np.testing.assert_allclose(gmm.covariances[1], 2 * np.eye(2))
        np.testing.assert_allclose(gmm.covariances[2],
                                   sum(p * np.outer(x, x) for x, p in zip(self.locations, target)))
        np.testing.assert_allclose(gmm.weights, np.full(3, 1 / 3))

    def test_recovery(self) -> None:

        target = self.psf.ravel() / self.psf.sum()

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', RuntimeWarning)
            result = fit_psf_gaussians_em(self.psf, tolerance=1e-16, max_iterations=2000)

        gmm = result.gmm

        self.assertAlmostEqual(gmm.weights.sum(), 1)

        # EM preserves the first moment of the data
        np.testing.assert_allclose(gmm.weights @ gmm.means, target @ self.locations, atol=1e-8)

        self.assertLess(abs(result.scale - 1), 0.1)

        fit = result.scale * gmm.evaluate(self.locations)
        self.assertLess(np.abs(fit - target).max(), 0.1 * target.max())

    def test_recovery_three_components(self) -> None:

        means = np.array([[0.0, 0.0], [-2.0, 1.0], [2.5, -1.5]])
        covariances = np.array([[[1.0, 0.2], [0.2, 0.8]],
                                [[0.7, 0.0], [0.0, 1.2]],
                                [[0.9, -0.3], [-0.3, 1.1]]])
        weights = np.array([0.5, 0.3, 0.2])

        psf = evaluate_mixture(self.grid, means, covariances, weights)

        with warnings.catch_warnings():
            # running out of iterations or collapsing a component fails the test
            warnings.simplefilter('error', RuntimeWarning)
            with self.assertLogs('mogpsf.point_spread_functions.expectation_maximization', level='INFO') as logs:
                result = fit_psf_gaussians_em(psf, tolerance=1e-12, max_iterations=5000)

        self.assertTrue(any('Tolerance reached' in message for message in logs.output))

        order = np.argsort(result.gmm.weights)[::-1]

        np.testing.assert_allclose(result.gmm.weights[order], weights, atol=1e-2)
        np.testing.assert_allclose(result.gmm.means[order], means, atol=2e-2)

        self.assertLess(abs(result.scale - 1), 1e-2)

    def test_deterministic(self) -> None:

        options = EMFitterOptions(max_iterations=20)

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', RuntimeWarning)
            first = EMMixtureFitter(options).fit(self.psf)
            second = EMMixtureFitter(options).fit(self.psf)

        np.testing.assert_array_equal(first.gmm.means, second.gmm.means)
        np.testing.assert_array_equal(first.gmm.covariances, second.gmm.covariances)
        np.testing.assert_array_equal(first.gmm.weights, second.gmm.weights)
        self.assertEqual(first.scale, second.scale)

    def test_converged(self) -> None:

        fitter = EMMixtureFitter(EMFitterOptions(tolerance=1e-3))

        with self.assertLogs('mogpsf.point_spread_functions.expectation_maximization', level='INFO') as logs:
            fitter.fit(self.psf)

        self.assertTrue(any('Tolerance reached' in message for message in logs.output))

    def test_max_iterations(self) -> None:

        fitter = EMMixtureFitter(EMFitterOptions(tolerance=0, max_iterations=1))

        with self.assertWarnsRegex(RuntimeWarning, 'max_iterations'):
            result = fitter.fit(self.psf)

        self.assertEqual(result.gmm.number_of_components, EM_COMPONENTS)

    def test_collapse(self) -> None:

        # with 3 components at least one weight is at most 1/3
        fitter = EMMixtureFitter(EMFitterOptions(minimum_weight=0.5, max_iterations=2))

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            fitter.fit(self.psf)

        self.assertTrue(any('very small probability' in str(warning.message) for warning in caught))

    def test_nan(self) -> None:

        nans = np.full((self.locations.shape[0], EM_COMPONENTS), np.nan)

        with patch.object(GaussianMixtureModel, 'posterior', return_value=(nans, nans)):
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', RuntimeWarning)
                with self.assertRaises(FloatingPointError):
                    EMMixtureFitter().fit(self.psf)

    def test_single_pixel(self) -> None:

        psf = np.zeros((5, 5))
        psf[2, 2] = 10

        # every location but the center has no mass so the covariances are singular
        with self.assertRaises(FloatingPointError):
            fit_psf_gaussians_em(psf)

    def test_negative_pixels(self) -> None:

        psf = self.psf.copy()
        psf[0, :] = -1e-3
        original = psf.copy()

        options = EMFitterOptions(max_iterations=5)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            attained = EMMixtureFitter(options).fit(psf)

        self.assertTrue(any('negative' in str(warning.message) for warning in caught))

        np.testing.assert_array_equal(psf, original)

        clamped = psf.copy()
        clamped[0, :] = 0

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', RuntimeWarning)
            expected = EMMixtureFitter(options).fit(clamped)

        np.testing.assert_array_equal(attained.gmm.means, expected.gmm.means)

    def test_bad_inputs(self) -> None:

        fitter = EMMixtureFitter()

        with self.subTest(problem='empty'):
            with self.assertRaises(ValueError):
                fitter.fit(np.zeros((5, 5)))

        with self.subTest(problem='dimensions'):
            with self.assertRaises(ValueError):
                fitter.fit(np.ones(5))

    def test_verbose(self) -> None:

        fitter = EMMixtureFitter(EMFitterOptions(max_iterations=2, verbose=True))

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', RuntimeWarning)
            with self.assertLogs('mogpsf.point_spread_functions.expectation_maximization', level='INFO') as logs:
                fitter.fit(self.psf)

        self.assertTrue(any('1: err=' in message for message in logs.output))

    def test_reset_settings(self) -> None:

        fitter = EMMixtureFitter(EMFitterOptions(max_iterations=10))

        fitter.max_iterations = 1
        fitter.tolerance = 1.0

        fitter.reset_settings()

        self.assertEqual(fitter.max_iterations, 10)
        self.assertEqual(fitter.tolerance, 1e-9)
