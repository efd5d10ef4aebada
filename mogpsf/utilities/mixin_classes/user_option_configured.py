# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This module provides the :class:`UserOptionConfigured` mixin, which configures a class from a :class:`.UserOptions`
dataclass and remembers that configuration so it can be restored.

Example::

    @dataclass
    class EMFitterOptions(UserOptions):
        tolerance: float = 1e-9

    class EMMixtureFitter(UserOptionConfigured[EMFitterOptions], EMFitterOptions):
        def __init__(self, options: EMFitterOptions | None = None):
            super().__init__(EMFitterOptions, options=options)

    fitter = EMMixtureFitter()
    fitter.tolerance = 1e-12
    fitter.reset_settings()  # tolerance is 1e-9 again

.. Note::
    :class:`UserOptionConfigured` must come first in the bases so that its ``__init__`` runs before the dataclass one.
"""

from copy import deepcopy
from typing import Generic, TypeVar

from mogpsf.utilities.options import UserOptions


OptionsT = TypeVar("OptionsT", bound=UserOptions)
"""
Type variable bound to UserOptions for type safety
"""


class UserOptionConfigured(Generic[OptionsT]):
    """
    Mixin class providing UserOptions-based configuration with reset capability.

    The options are applied as instance attributes at initialization, and a deep copy of them is kept in
    :attr:`original_options` so that :meth:`reset_settings` can undo any later changes.

    .. Warning::
        If options are not provided during initialization, the default initialization of the options_type class is
        used.
    """

    def __init__(self, options_type: type[OptionsT], *args, options: OptionsT | None = None, **kwargs) -> None:
        """
        :param options_type: The type of the :class:`.UserOptions` to use
        :param options: An optional instance of `options_type` preconfigured.
        """

        super().__init__(*args, **kwargs)

        if options is None:
            options = options_type()

        options.apply_options(self)

        self._original_options: OptionsT = deepcopy(options)
        """
        The original configuration for this class
        """

    def reset_settings(self) -> None:
        """
        Resets the class to the state it was originally initialized with.
        """

        self._original_options.apply_options(self)

    @property
    def original_options(self) -> OptionsT:
        """
        The options used during initialization.
        """
        return self._original_options
