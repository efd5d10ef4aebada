# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This module provides a mixin giving configured classes a readable ``repr``.
"""


class AttributePrinting:
    """
    A mixin class that provides __str__ and __repr__ functionality.

    The representation lists the public attributes of the instance (for a fitter these are its configured options).
    Private attributes are reported under their property name when such a property exists and are skipped otherwise.
    """

    def _public_items(self) -> list[tuple[str, object]]:
        items = []
        for attr, value in self.__dict__.items():
            if attr.startswith('_'):
                prop_name = attr.lstrip('_')
                if not isinstance(getattr(type(self), prop_name, None), property):
                    continue
                attr, value = prop_name, getattr(self, prop_name)
            items.append((attr, value))
        return items

    def _build_representation(self, attribute_repr: bool) -> str:
        """
        Turns the instance into a ``ClassName(attr=value, ...)`` string.

        :param attribute_repr: Whether to call repr on attributes instead of str.
        """

        template = "{}={!r}" if attribute_repr else "{}={!s}"
        attributes = [template.format(attr, value).replace('\n', '') for attr, value in self._public_items()]
        return f"{type(self).__name__}({', '.join(attributes)})"

    def __str__(self) -> str:
        return self._build_representation(False)

    def __repr__(self) -> str:
        return self._build_representation(True)
