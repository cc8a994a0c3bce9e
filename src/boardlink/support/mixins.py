class StringerMixin:
    """
    Renders the type name and the attributes, sorted by name.

    >>> class Point(StringerMixin):
    ...     def __init__(self):
    ...         self.y, self.x = 2, 'a'
    >>> str(Point())
    "Point(x='a', y=2)"
    """

    def __str__(self):
        attributes = ", ".join("%s=%r" % item for item in sorted(vars(self).items()))
        return "%s(%s)" % (type(self).__name__, attributes)


class CommonEqualityMixin(object):
    """ Value objects of the same type are equal when their attributes are equal. """

    def __eq__(self, other):
        return isinstance(other, type(self)) and vars(self) == vars(other)

    def __ne__(self, other):
        return not self.__eq__(other)

    __hash__ = object.__hash__
