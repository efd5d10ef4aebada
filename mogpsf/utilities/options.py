# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This module provides the :class:`UserOptions` ABC, the dataclass base used to configure the fitters in mogpsf.
"""

from dataclasses import dataclass, fields

from typing import Dict, Any

from abc import ABCMeta


@dataclass
class UserOptions(metaclass=ABCMeta):
    """
    This is an abstract class used to create a dataclass of user options.

    These options set the defaults for attributes of the class they configure.  For instance
    :class:`.LeastSquaresFitterOptions` holds the default number of components, tolerance, iteration limit, and
    minimizer for :class:`.LeastSquaresMixtureFitter`.

    Subclasses follow the naming scheme <configured_class_name>Options and are passed through the ``options`` keyword
    argument of the configured class.  The options are applied by calling :meth:`apply_options`.

    for example:
        >>> @dataclass
        >>> class ExampleOptions(UserOptions):
        >>>     example_var: int = 1234

        >>> class Example:
        >>>     def __init__(self, options=None):
        >>>         if options is None:
        >>>             options = ExampleOptions()
        >>>         options.apply_options(self)
        >>> my_example = Example()
        >>> print(my_example.example_var)
        ...     1234
    """

    def override_options(self):
        """
        This method is used for special cases when certain options should be overwritten before being applied
        """
        pass

    def apply_options(self, target: object) -> None:
        """
        Update the options as attributes of the object class

        :param target: the instance that we are to update
        """
        target.__dict__.update(self.options_dict)

    @property
    def options_dict(self) -> Dict[str, Any]:
        """
        The options stored in the dataclass as a dictionary mapping field name to value.

        Only dataclass fields are included, so internal attributes and methods are ignored.
        """

        self.override_options()
        return {field.name: getattr(self, field.name) for field in fields(self)}
