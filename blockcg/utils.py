# -*- coding: utf8 -*-
'''
Collection of standard functions.

This module provides the exceptions, inner products, column norms, linear
operator adapters and timers that are shared by the block CG solver.
'''

import numbers
import time
import warnings
from collections import defaultdict

import numpy
from scipy.sparse import issparse

__all__ = ['ArgumentError', 'LinearProblemError', 'InternalConsistencyError',
           'CgIterationError', 'CgInitializationError',
           'CgPositiveDefiniteError', 'CgLossOfAccuracyError',
           'CgOrthoFailure', 'LinearOperatorError',
           'IdentityLinearOperator', 'LinearOperator', 'MatrixLinearOperator',
           'Timer', 'Timings', 'column_norms', 'find_common_dtype',
           'get_linearoperator', 'inner', 'is_finite', 'orthonormality',
           'shape_vec', 'shape_vecs']


class ArgumentError(Exception):
    '''Raised when an argument is invalid.

    Analogue to ``ValueError`` which is not used here in order to be able
    to distinguish between built-in errors and ``blockcg`` errors.
    '''


class LinearProblemError(Exception):
    '''Raised by a solver when the linear problem has not been set up.'''


class InternalConsistencyError(Exception):
    '''Raised when an iteration returns although none of the status tests
    passed.

    This is never expected in correct operation and indicates a broken
    contract between the iteration and its status tests.
    '''


class CgIterationError(Exception):
    '''Base class of the errors raised by the CG iterations.'''


class CgInitializationError(CgIterationError):
    '''Raised when an iteration is used before it was initialized or when the
    provided initial residual does not fit.'''


class CgPositiveDefiniteError(CgIterationError):
    '''Raised when :math:`p^*Ap \\leq 0` is detected and the positive
    definiteness of the operator is asserted.'''


class CgLossOfAccuracyError(CgIterationError):
    '''Raised when the Cholesky factorization of :math:`P^*AP` fails in
    block CG.'''


class CgOrthoFailure(CgIterationError):
    '''Raised when a block of search directions is rank deficient.'''


class LinearOperatorError(Exception):
    '''Raised when a :py:class:`LinearOperator` cannot be applied.'''


def find_common_dtype(*args):
    '''Returns common dtype of numpy and scipy objects.

    Recognizes ndarray, spmatrix and LinearOperator. All other objects are
    ignored (most notably None).'''
    dtypes = []
    for arg in args:
        if type(arg) is numpy.ndarray or  \
                issparse(arg) or \
                isinstance(arg, LinearOperator):
            if hasattr(arg, 'dtype'):
                dtypes.append(arg.dtype)
            else:
                warnings.warn('object %s does not have a dtype.'
                              % arg.__repr__)
    if not dtypes:
        return numpy.dtype(float)
    return numpy.result_type(*dtypes)


def shape_vec(x):
    '''Take a (n,) ndarray and return it as (n,1) ndarray.'''
    return numpy.reshape(x, (x.shape[0], 1))


def shape_vecs(*args):
    '''Reshape all ndarrays with ``shape==(n,)`` to ``shape==(n,1)``.

    Recognizes ndarrays and ignores all others.'''
    ret_args = []
    flat_vecs = True
    for arg in args:
        if type(arg) is numpy.ndarray:
            if len(arg.shape) == 1:
                arg = shape_vec(arg)
            else:
                flat_vecs = False
        ret_args.append(arg)
    return flat_vecs, ret_args


def inner(X, Y):
    '''Euclidean block inner product.

    numpy.vdot only works for vectors and numpy.dot does not use the conjugate
    transpose.

    :param X: numpy array with ``shape==(N,m)``
    :param Y: numpy array with ``shape==(N,n)``

    :return: numpy array :math:`X^* Y` with ``shape==(m,n)``.
    '''
    return numpy.dot(X.T.conj(), Y)


def column_norms(X, norm_type='TwoNorm'):
    '''Compute the norm of every column of ``X``.

    :param X: numpy array with ``shape==(N,k)``.
    :param norm_type: (optional) one of ``'OneNorm'``, ``'TwoNorm'`` and
      ``'InfNorm'``.

    :return: numpy array with ``shape==(k,)``.
    '''
    if X.shape[1] == 0:
        return numpy.zeros(0)
    if norm_type == 'TwoNorm':
        return numpy.linalg.norm(X, 2, axis=0)
    elif norm_type == 'OneNorm':
        return numpy.linalg.norm(X, 1, axis=0)
    elif norm_type == 'InfNorm':
        return numpy.linalg.norm(X, numpy.inf, axis=0)
    raise ArgumentError('unknown norm type {0}'.format(norm_type))


def is_finite(*args):
    '''Check that all given scalars and arrays only hold finite numbers.'''
    return all(numpy.all(numpy.isfinite(arg)) for arg in args)


def orthonormality(V):
    """Measure orthonormality of given basis.

    :param V: a matrix :math:`V=[v_1,\\ldots,v_n]` with ``shape==(N,n)``.

    :return: :math:`\\| I_n - \\langle V,V \\rangle \\|_2`.
    """
    return numpy.linalg.norm(numpy.eye(V.shape[1]) - inner(V, V), 2)


def get_linearoperator(shape, A):
    """Enhances aslinearoperator if A is None."""
    ret = None
    import scipy.sparse.linalg as scipylinalg
    if isinstance(A, LinearOperator):
        ret = A
    elif A is None:
        ret = IdentityLinearOperator(shape)
    elif isinstance(A, numpy.ndarray) or issparse(A):
        ret = MatrixLinearOperator(A)
    elif isinstance(A, scipylinalg.LinearOperator):
        if not hasattr(A, 'dtype') or A.dtype is None:
            raise ArgumentError('scipy LinearOperator has no dtype.')
        ret = LinearOperator(A.shape, dot=A.matmat, dtype=A.dtype)
    else:
        raise TypeError('type not understood')

    # check shape
    if shape is not None and shape != ret.shape:
        raise LinearOperatorError('shape mismatch')

    return ret


class LinearOperator(object):
    """Linear operator acting on blocks of column vectors.

    Is partly based on the LinearOperator from scipy (BSD License).
    """
    def __init__(self, shape, dtype, dot):
        if len(shape) != 2 \
                or not isinstance(shape[0], numbers.Integral) \
                or not isinstance(shape[1], numbers.Integral):
            raise LinearOperatorError('shape must be (m,n) with m and n '
                                      'integer')
        self.shape = tuple(shape)
        self.dtype = numpy.dtype(dtype)  # defaults to float64
        if dot is None:
            raise LinearOperatorError('dot has to be defined')
        self._dot = dot

    def dot(self, X):
        X = numpy.asanyarray(X)
        m, n = self.shape
        if X.ndim != 2 or X.shape[0] != n:
            raise LinearOperatorError('dimension mismatch')
        if X.shape[1] == 0:
            return numpy.zeros((m, 0), dtype=numpy.result_type(self.dtype,
                                                               X.dtype))
        return numpy.asarray(self._dot(X)).reshape(m, X.shape[1])

    def __mul__(self, X):
        try:
            return self.dot(X)
        except LinearOperatorError:
            return NotImplemented

    def __repr__(self):
        m, n = self.shape
        return '<%dx%d %s with dtype=%s>' \
            % (m, n, self.__class__.__name__, str(self.dtype))


class IdentityLinearOperator(LinearOperator):
    def __init__(self, shape):
        super(IdentityLinearOperator, self).__init__(shape, numpy.dtype(None),
                                                     self._dot_id)

    def _dot_id(self, X):
        return X


class MatrixLinearOperator(LinearOperator):
    def __init__(self, A):
        super(MatrixLinearOperator, self).__init__(A.shape, A.dtype,
                                                   self._dot_matrix)
        self._A = A

    def _dot_matrix(self, X):
        return self._A.dot(X)

    def __repr__(self):
        return self._A.__repr__()


class Timer(list):
    """Measure execution time of multiple code blocks with ``with``.

    Example: ::

        t = Timer()
        with t:
            print('time me!')
        print('don\\\'t time me!')
        with t:
            print('time me, too!')
        print(t)

    Result: ::

        time me!
        don't time me!
        time me, too!
        [6.389617919921875e-05, 6.008148193359375e-05]

    """
    def __init__(self):
        super(Timer, self).__init__()

    def __enter__(self):
        self.tstart = time.time()

    def __exit__(self, a, b, c):
        self.append(time.time() - self.tstart)


class Timings(defaultdict):
    '''Manages several timers.

    If you want to measure different types of code blocks you can use ::

        tm = Timings()
        with tm['class1']:
            print('code that belongs to class1')
        with tm['class2']:
            print('code that belongs to class2')
        print(tm)
    '''
    def __init__(self):
        super(Timings, self).__init__(Timer)

    def get(self, key):
        '''Return the total time recorded for `key`. Returns 0 if not
        present.'''
        if key in self and len(self[key]) > 0:
            return sum(self[key])
        else:
            return 0

    def __repr__(self):
        return 'Timings(' + ', '.join(
            ['{0}: {1}'.format(key, self.get(key)) for key in self]
            ) + ')'
