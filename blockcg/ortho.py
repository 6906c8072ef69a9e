# -*- coding: utf8 -*-
'''
Orthogonalization of blocks of vectors.

Three Gram-Schmidt variants are provided, all working in place on blocks
with ``shape==(N,k)`` and the Euclidean inner product:

* ``'DGKS'``: classical Gram-Schmidt with a conditional second pass
  (Daniel, Gragg, Kaufman, Stewart).
* ``'ICGS'``: iterated classical Gram-Schmidt.
* ``'IMGS'``: iterated modified Gram-Schmidt.
'''
import numpy

from . import utils

__all__ = ['DgksOrthoManager', 'IcgsOrthoManager', 'ImgsOrthoManager',
           'get_ortho_manager', 'ortho_types']

_eps = numpy.finfo(float).eps


class _OrthoManager(object):
    '''Prototype of an orthogonalization manager.'''
    name = None

    def __init__(self, sing_tol=None, max_ortho_steps=2):
        self.sing_tol = 10*_eps if sing_tol is None else sing_tol
        self.max_ortho_steps = max_ortho_steps

    def project(self, X, Q):
        '''Orthogonalize ``X`` against the orthonormal basis ``Q``.

        ``X`` is modified in place.

        :param X: array with ``shape==(N,k)``.
        :param Q: array with ``shape==(N,m)`` and orthonormal columns.

        :return: the coefficients :math:`C` with
          :math:`X_{\\text{old}} = X_{\\text{new}} + Q C`.
        '''
        C = numpy.zeros((Q.shape[1], X.shape[1]),
                        dtype=numpy.result_type(Q.dtype, X.dtype))
        if Q.shape[1] == 0 or X.shape[1] == 0:
            return C
        for j in range(X.shape[1]):
            C[:, [j]] = self._project_vector(X[:, j:j+1], Q)
        return C

    def normalize(self, X):
        '''Orthonormalize the columns of ``X`` in place.

        :param X: array with ``shape==(N,k)``.

        :return: ``rank, R`` where :math:`X_{\\text{old}} = X_{\\text{new}} R`
          with upper triangular ``R``. ``rank < k`` signals that column
          ``rank`` was numerically dependent on the previous ones; the
          columns from ``rank`` on are not meaningful then.
        '''
        k = X.shape[1]
        R = numpy.zeros((k, k), dtype=X.dtype)
        for j in range(k):
            origin_norm = numpy.linalg.norm(X[:, j], 2)
            if j > 0:
                R[:j, [j]] = self._project_vector(X[:, j:j+1], X[:, :j])
            new_norm = numpy.linalg.norm(X[:, j], 2)
            if origin_norm == 0 or new_norm <= origin_norm*self.sing_tol:
                return j, R
            R[j, j] = new_norm
            X[:, j] /= new_norm
        return k, R

    def project_and_normalize(self, X, Q):
        '''Orthogonalize ``X`` against ``Q`` and orthonormalize the result.

        :return: ``rank, C, R`` with
          :math:`X_{\\text{old}} = Q C + X_{\\text{new}} R`.
        '''
        C = self.project(X, Q)
        rank, R = self.normalize(X)
        return rank, C, R

    def _project_vector(self, x, Q):
        raise NotImplementedError('_project_vector has to be overridden by '
                                  'the derived orthogonalization class.')

    def __repr__(self):
        return '{0}(sing_tol={1})'.format(self.__class__.__name__,
                                          self.sing_tol)


class DgksOrthoManager(_OrthoManager):
    '''Classical Gram-Schmidt with DGKS re-orthogonalization.

    A second pass of classical Gram-Schmidt is carried out if the norm of a
    vector dropped below ``dep_tol`` times its norm before the first pass.
    '''
    name = 'DGKS'

    def __init__(self, dep_tol=None, **kwargs):
        super(DgksOrthoManager, self).__init__(**kwargs)
        self.dep_tol = dep_tol

    @property
    def dep_tol(self):
        '''Threshold for the dependency check (mutable).'''
        return self._dep_tol

    @dep_tol.setter
    def dep_tol(self, dep_tol):
        if dep_tol is None:
            dep_tol = 1/numpy.sqrt(2)
        if dep_tol <= 0:
            raise utils.ArgumentError('dep_tol has to be positive.')
        self._dep_tol = dep_tol

    def _project_vector(self, x, Q):
        origin_norm = numpy.linalg.norm(x, 2)
        c = utils.inner(Q, x)
        x -= numpy.dot(Q, c)
        new_norm = numpy.linalg.norm(x, 2)
        # DGKS criterion
        for step in range(1, self.max_ortho_steps):
            if new_norm >= origin_norm*self.dep_tol:
                break
            dc = utils.inner(Q, x)
            x -= numpy.dot(Q, dc)
            c += dc
            origin_norm, new_norm = new_norm, numpy.linalg.norm(x, 2)
        return c


class IcgsOrthoManager(_OrthoManager):
    '''Iterated classical Gram-Schmidt.'''
    name = 'ICGS'

    def _project_vector(self, x, Q):
        c = numpy.zeros((Q.shape[1], 1),
                        dtype=numpy.result_type(Q.dtype, x.dtype))
        for step in range(self.max_ortho_steps):
            dc = utils.inner(Q, x)
            x -= numpy.dot(Q, dc)
            c += dc
        return c


class ImgsOrthoManager(_OrthoManager):
    '''Iterated modified Gram-Schmidt.'''
    name = 'IMGS'

    def _project_vector(self, x, Q):
        c = numpy.zeros((Q.shape[1], 1),
                        dtype=numpy.result_type(Q.dtype, x.dtype))
        for step in range(self.max_ortho_steps):
            for i in range(Q.shape[1]):
                alpha = utils.inner(Q[:, [i]], x)[0, 0]
                c[i, 0] += alpha
                x -= alpha * Q[:, [i]]
        return c


ortho_types = {
    'DGKS': DgksOrthoManager,
    'ICGS': IcgsOrthoManager,
    'IMGS': ImgsOrthoManager
    }


def get_ortho_manager(name, dep_tol=None):
    '''Construct an orthogonalization manager by name.

    :param name: one of ``'DGKS'``, ``'ICGS'`` and ``'IMGS'``
      (case-insensitive).
    :param dep_tol: (optional) dependency threshold for ``'DGKS'``. Ignored
      for the other kinds and if not positive.
    '''
    try:
        Ortho = ortho_types[name.upper()]
    except (KeyError, AttributeError):
        raise utils.ArgumentError(
            'Invalid value \'{0}\' for orthogonalization. '.format(name)
            + 'Valid are DGKS, ICGS and IMGS.')
    if Ortho is DgksOrthoManager:
        if dep_tol is not None and dep_tol > 0:
            return Ortho(dep_tol=dep_tol)
        return Ortho()
    return Ortho()
