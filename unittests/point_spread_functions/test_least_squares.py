from unittest import TestCase

import numpy as np

from mogpsf.point_spread_functions.least_squares import (LeastSquaresMixtureFitter, LeastSquaresFitterOptions,
                                                         fit_psf_gaussians_least_squares, clamp_negative,
                                                         default_initial_parameters)
from mogpsf.point_spread_functions.parameterization import wrap_parameters, unwrap_parameters
from mogpsf.point_spread_functions.mixtures import location_grid, evaluate_mixture, render_mixture


rng = np.random.default_rng(193339)


class TestClampNegative(TestCase):

    def test_clamp(self) -> None:

        psf = np.array([[1.0, -2.0], [0.5, -0.1]])
        original = psf.copy()

        with self.assertWarns(RuntimeWarning):
            clamped = clamp_negative(psf)

        np.testing.assert_array_equal(clamped, [[1.0, 0.0], [0.5, 0.0]])

        # the input is left alone
        np.testing.assert_array_equal(psf, original)

    def test_fit_matches_clamped_fit(self) -> None:

        psf = np.zeros((5, 5))
        psf[2, 2] = 10
        psf[1, 2] = 3

        negative = psf.copy()
        negative[0, 0] = -4
        negative[4, 1] = -0.5

        options = LeastSquaresFitterOptions(number_of_components=1, max_iterations=200)

        with self.assertWarns(RuntimeWarning):
            attained = LeastSquaresMixtureFitter(options).fit(negative)

        expected = LeastSquaresMixtureFitter(options).fit(psf)

        np.testing.assert_array_equal(attained.optimizer_result.x, expected.optimizer_result.x)


class TestDefaultInitialParameters(TestCase):

    def test_default(self) -> None:

        locations = location_grid((5, 5)).reshape(-1, 2)
        values = np.zeros(25)
        values[7] = 1.0  # location (-1, 0)
        values[18] = 3.0  # location (1, 1)

        means, covariances, weights = unwrap_parameters(default_initial_parameters(values, locations, 3))

        np.testing.assert_allclose(means, np.tile([0.5, 0.75], (3, 1)))

        for k in range(3):
            with self.subTest(component=k):
                np.testing.assert_allclose(covariances[k], np.sqrt(2 * (k + 1)) * np.eye(2), atol=1e-12)

        np.testing.assert_allclose(weights, np.full(3, 1 / 3))

    def test_empty(self) -> None:

        with self.assertRaises(ValueError):
            default_initial_parameters(np.zeros(9), location_grid((3, 3)).reshape(-1, 2), 2)


class TestLeastSquaresMixtureFitter(TestCase):

    def setUp(self) -> None:
        self.grid = location_grid((15, 15))

        self.means = np.array([[-2.0, 0.0], [2.0, 1.0]])
        self.covariances = np.array([[[1.5, 0.0], [0.0, 1.0]],
                                     [[2.0, 0.3], [0.3, 1.0]]])
        self.weights = np.array([3.0, 2.0])

        self.psf = evaluate_mixture(self.grid, self.means, self.covariances, self.weights)

    def test_objective_decreases(self) -> None:

        for method in ['Nelder-Mead', 'BFGS']:
            with self.subTest(method=method):
                options = LeastSquaresFitterOptions(number_of_components=2, method=method, max_iterations=300)

                result = LeastSquaresMixtureFitter(options).fit(self.psf)

                history = np.array(result.optimizer_result.objective_history)

                initial = np.square(self.psf.ravel() -
                                    render_mixture(default_initial_parameters(self.psf.ravel(),
                                                                              self.grid.reshape(-1, 2), 2),
                                                   self.grid.reshape(-1, 2))).sum()

                self.assertGreater(history.size, 0)
                self.assertLessEqual(history[0], initial)
                self.assertTrue((np.diff(history) <= 1e-12).all())
                self.assertAlmostEqual(history[-1], result.optimizer_result.fun)

    def test_recovery_gradient(self) -> None:

        start = wrap_parameters(self.means + [[0.3, -0.2], [-0.2, 0.3]],
                                self.covariances * 1.2,
                                self.weights * 0.8)

        result = fit_psf_gaussians_least_squares(self.psf, initial_parameters=start, number_of_components=2,
                                                 method='BFGS', tolerance=1e-10)

        self.assertLess(result.optimizer_result.fun, 1e-10)

        np.testing.assert_allclose(result.means, self.means, atol=1e-4)
        np.testing.assert_allclose(result.covariances, self.covariances, atol=1e-4)
        np.testing.assert_allclose(result.weights, self.weights, atol=1e-4)

    def test_recovery_simplex(self) -> None:

        mean = np.array([[0.3, -0.2]])
        covariance = np.array([[[2.0, 0.4], [0.4, 1.5]]])
        weight = np.array([5.0])

        psf = evaluate_mixture(location_grid((11, 11)), mean, covariance, weight)

        result = fit_psf_gaussians_least_squares(psf, number_of_components=1, max_iterations=20000)

        np.testing.assert_allclose(result.means, mean, atol=1e-3)
        np.testing.assert_allclose(result.covariances, covariance, atol=1e-3)
        np.testing.assert_allclose(result.weights, weight, atol=1e-3)

    def test_single_peak(self) -> None:

        psf = np.zeros((5, 5))
        psf[2, 2] = 10

        result = fit_psf_gaussians_least_squares(psf, number_of_components=2)

        history = result.optimizer_result.objective_history

        self.assertLess(history[-1], np.square(psf).sum())

        dominant = result.weights.argmax()
        self.assertLess(np.abs(result.means[dominant]).max(), 0.5)

        rendered = render_mixture(result.optimizer_result.x, location_grid(psf.shape))
        self.assertEqual(np.unravel_index(rendered.argmax(), rendered.shape), (2, 2))

    def test_gradient(self) -> None:

        fitter = LeastSquaresMixtureFitter(LeastSquaresFitterOptions(method='bfgs'))

        locations = self.grid.reshape(-1, 2)
        values = self.psf.ravel()

        gradient = fitter._gradient(values, locations)

        par = rng.normal(scale=0.5, size=12)

        def objective(p):
            return np.square(values - render_mixture(p, locations)).sum()

        step = 1e-6
        numeric = np.array([(objective(par + step * e) - objective(par - step * e)) / (2 * step)
                            for e in np.eye(par.size)])

        np.testing.assert_allclose(gradient(par), numeric, rtol=1e-5, atol=1e-6)

    def test_no_gradient_for_simplex(self) -> None:

        fitter = LeastSquaresMixtureFitter()

        self.assertIsNone(fitter._gradient(self.psf.ravel(), self.grid.reshape(-1, 2)))

    def test_gradient_methods(self) -> None:

        locations = self.grid.reshape(-1, 2)

        for method, has_gradient in [('newton-cg', True), ('L-BFGS-B', True), ('trust-constr', False),
                                     ('Powell', False)]:
            with self.subTest(method=method):
                fitter = LeastSquaresMixtureFitter(LeastSquaresFitterOptions(method=method))

                gradient = fitter._gradient(self.psf.ravel(), locations)

                self.assertEqual(gradient is not None, has_gradient)

    def test_bad_inputs(self) -> None:

        fitter = LeastSquaresMixtureFitter()

        with self.subTest(problem='image'):
            with self.assertRaises(ValueError):
                fitter.fit(np.ones(5))

        with self.subTest(problem='initial parameters'):
            with self.assertRaises(ValueError):
                fitter.fit(self.psf, initial_parameters=np.zeros(6))

        with self.subTest(problem='locations'):
            with self.assertRaises(ValueError):
                fitter.fit_points(np.zeros((4, 2)), np.ones(5))

    def test_fit_points(self) -> None:

        locations = self.grid.reshape(-1, 2)

        options = LeastSquaresFitterOptions(number_of_components=2, max_iterations=50)

        from_image = LeastSquaresMixtureFitter(options).fit(self.psf)
        from_points = LeastSquaresMixtureFitter(options).fit_points(locations, self.psf.ravel())

        np.testing.assert_array_equal(from_image.optimizer_result.x, from_points.optimizer_result.x)

    def test_verbose(self) -> None:

        options = LeastSquaresFitterOptions(max_iterations=3, verbose=True)

        with self.assertLogs('mogpsf.point_spread_functions.least_squares', level='INFO') as logs:
            LeastSquaresMixtureFitter(options).fit(self.psf)

        self.assertTrue(any('Using default initialization.' in message for message in logs.output))
        self.assertTrue(any('iteration 1' in message for message in logs.output))

    def test_reset_settings(self) -> None:

        fitter = LeastSquaresMixtureFitter(LeastSquaresFitterOptions(number_of_components=3))

        fitter.number_of_components = 5
        fitter.method = 'BFGS'

        fitter.reset_settings()

        self.assertEqual(fitter.number_of_components, 3)
        self.assertEqual(fitter.method, 'Nelder-Mead')
        self.assertEqual(fitter.original_options, LeastSquaresFitterOptions(number_of_components=3))
