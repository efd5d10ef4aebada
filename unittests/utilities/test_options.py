from dataclasses import dataclass, field
from unittest import TestCase

from mogpsf.utilities.options import UserOptions
from mogpsf.utilities.mixin_classes import UserOptionConfigured, AttributePrinting


@dataclass
class ExampleOptions(UserOptions):
    tolerance: float = 1e-6
    labels: list = field(default_factory=lambda: ['core', 'wing'])


class Example(UserOptionConfigured[ExampleOptions], AttributePrinting, ExampleOptions):

    def __init__(self, options=None):
        super().__init__(ExampleOptions, options=options)


class TestUserOptions(TestCase):

    def test_options_dict(self) -> None:

        self.assertEqual(ExampleOptions(tolerance=2.0).options_dict, {'tolerance': 2.0, 'labels': ['core', 'wing']})

    def test_apply_options(self) -> None:

        class Target:
            pass

        target = Target()
        ExampleOptions(tolerance=3.0).apply_options(target)

        self.assertEqual(target.tolerance, 3.0)
        self.assertEqual(target.labels, ['core', 'wing'])


class TestUserOptionConfigured(TestCase):

    def test_defaults(self) -> None:

        example = Example()

        self.assertEqual(example.tolerance, 1e-6)
        self.assertEqual(example.original_options, ExampleOptions())

    def test_reset_settings(self) -> None:

        options = ExampleOptions(tolerance=0.5)
        example = Example(options)

        example.tolerance = 10.0
        example.labels.append('halo')

        example.reset_settings()

        self.assertEqual(example.tolerance, 0.5)
        self.assertEqual(example.labels, ['core', 'wing'])

        # the caller's options are not tied to the instance
        options.tolerance = 7.0
        example.reset_settings()
        self.assertEqual(example.tolerance, 0.5)


class TestAttributePrinting(TestCase):

    def test_repr(self) -> None:

        example = Example(ExampleOptions(tolerance=0.25))

        representation = repr(example)

        self.assertTrue(representation.startswith('Example('))
        self.assertIn('tolerance=0.25', representation)
        self.assertIn("labels=['core', 'wing']", representation)
        self.assertIn('original_options=', representation)
