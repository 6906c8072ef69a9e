# -*- coding: utf8 -*-
'''
Configuration of the block CG solver.

:py:class:`Parameters` is an immutable record. New configurations are derived
with :py:meth:`Parameters.from_dict` which validates the given values
against the schema below. Keys are accepted in their display form
(``'Block Size'``) or as identifiers (``block_size``).
'''
import collections
import numbers

import numpy

from . import utils
from .ortho import ortho_types
from .status import norm_types, scale_types

__all__ = ['Parameters', 'schema']


def _is_bool(value):
    return isinstance(value, (bool, numpy.bool_))


def _is_int(value):
    return isinstance(value, numbers.Integral) and not _is_bool(value)


def _is_real(value):
    return isinstance(value, numbers.Real) and not _is_bool(value)


def _check_bool(name, value):
    if not _is_bool(value):
        raise utils.ArgumentError('\'{0}\' has to be a bool, got {1!r}.'
                                  .format(name, value))
    return bool(value)


def _check_int(minimum):
    def check(name, value):
        if not _is_int(value):
            raise utils.ArgumentError('\'{0}\' has to be an integer, got '
                                      '{1!r}.'.format(name, value))
        if minimum is not None and value < minimum:
            raise utils.ArgumentError('\'{0}\' has to be >= {1}, got {2}.'
                                      .format(name, minimum, value))
        return int(value)
    return check


def _check_real(minimum):
    def check(name, value):
        if not _is_real(value):
            raise utils.ArgumentError('\'{0}\' has to be a real number, got '
                                      '{1!r}.'.format(name, value))
        if minimum is not None and value < minimum:
            raise utils.ArgumentError('\'{0}\' has to be >= {1}, got {2}.'
                                      .format(name, minimum, value))
        return float(value)
    return check


def _check_choice(choices, upper=False):
    def check(name, value):
        if not isinstance(value, str):
            raise utils.ArgumentError('\'{0}\' has to be a string, got '
                                      '{1!r}.'.format(name, value))
        if upper:
            value = value.upper()
        if value not in choices:
            raise utils.ArgumentError(
                'Invalid value \'{0}\' for \'{1}\'. Valid are {2}.'
                .format(value, name, ', '.join(sorted(choices))))
        return value
    return check


def _check_str(name, value):
    if not isinstance(value, str):
        raise utils.ArgumentError('\'{0}\' has to be a string, got {1!r}.'
                                  .format(name, value))
    return value


#: (display name, default, validator)
schema = [
    ('Block Size', 1, _check_int(1)),
    ('Adaptive Block Size', True, _check_bool),
    ('Use Single Reduction', False, _check_bool),
    ('Maximum Iterations', 1000, _check_int(0)),
    ('Convergence Tolerance', 1e-8, _check_real(0)),
    ('Orthogonalization', 'ICGS', _check_choice(ortho_types, upper=True)),
    ('Orthogonalization Constant', -1., _check_real(None)),
    ('Residual Norm', 'TwoNorm', _check_choice(norm_types)),
    ('Implicit Residual Scaling', 'Norm of Initial Residual',
     _check_choice(scale_types)),
    ('Show Maximum Residual Norm Only', False, _check_bool),
    ('Assert Positive Definiteness', True, _check_bool),
    ('Fold Convergence Detection Into Allreduce', False, _check_bool),
    ('Output Frequency', -1, _check_int(None)),
    ('Timer Label', 'blockcg', _check_str),
    ]


def _field(display_name):
    return display_name.strip().lower().replace(' ', '_')


_fields = [_field(name) for name, _, _ in schema]
_display_names = dict((_field(name), name) for name, _, _ in schema)
_validators = dict((_field(name), check) for name, _, check in schema)


class Parameters(collections.namedtuple('Parameters', _fields)):
    '''Immutable configuration of :py:class:`~blockcg.solvers.BlockCgSolver`.

    Build instances with :py:meth:`defaults` or :py:meth:`from_dict`; the
    fields are the identifier forms of the display names in :py:data:`schema`
    (e.g. ``params.convergence_tolerance``).
    '''
    __slots__ = ()

    @classmethod
    def defaults(cls):
        return cls(*[default for _, default, _ in schema])

    @classmethod
    def from_dict(cls, d=None, base=None):
        '''Validate ``d`` and merge it into ``base``.

        :param d: (optional) mapping from display names or identifiers to
          values.
        :param base: (optional) the :py:class:`Parameters` that provide the
          values not present in ``d``. Defaults to :py:meth:`defaults`.
        '''
        values = (cls.defaults() if base is None else base)._asdict()
        for key, value in (d or {}).items():
            if not isinstance(key, str):
                raise utils.ArgumentError('invalid parameter name {0!r}'
                                          .format(key))
            field = _field(key)
            if field not in _validators:
                raise utils.ArgumentError(
                    'Unknown parameter \'{0}\'. Valid are {1}.'.format(
                        key, ', '.join(name for name, _, _ in schema)))
            values[field] = _validators[field](_display_names[field], value)
        return cls(**values)

    def changed(self, other):
        '''Names of the fields whose values differ from ``other``.

        All fields are returned if ``other`` is ``None``.'''
        if other is None:
            return set(self._fields)
        return set(field for field in self._fields
                   if getattr(self, field) != getattr(other, field))

    def to_dict(self):
        '''Mapping from display names to values.'''
        return collections.OrderedDict(
            (_display_names[field], getattr(self, field))
            for field in self._fields)
