# -*- coding: utf8 -*-
import logging

import numpy

from . import utils

__all__ = ['LinearProblem']

logger = logging.getLogger(__name__)


class LinearProblem(object):
    def __init__(self, A, X=None, B=None, M=None):
        r'''Representation of a block of linear systems sharing an operator.

        Represents the linear systems

        .. math::

          A X = B

        where :math:`B` holds one right hand side per column. A solver only
        works on a subset of the columns at a time; this subset is selected
        with :py:meth:`set_ls_index` and its working copies are available
        via :py:meth:`get_curr_lhs_vec` and :py:meth:`get_curr_rhs_vec`.

        :param A: a linear operator on :math:`\mathbb{C}^N` (has to be
          compatible with :py:meth:`~blockcg.utils.get_linearoperator`).
        :param X: (optional) the initial guess with ``X.shape == (N, k)``.
          Defaults to the zero block.
        :param B: the right hand sides with ``B.shape == (N, k)``.
        :param M: (optional) a self-adjoint and positive definite
          preconditioner, linear operator on :math:`\mathbb{C}^N`. Defaults
          to the identity.

        The problem is not ready to be solved before :py:meth:`set_problem`
        has been called.
        '''
        self.A = A
        self.M = M
        self.X = X
        self.B = B
        self.flat_vecs = False

        self._is_set = False
        self._R0 = None
        self._PR0 = None

        self._rhs_index = []
        self._curr_X = None
        self._curr_B = None
        self._num_to_solve = 0
        self._ls_number = 0
        self._random = numpy.random.RandomState()

    def set_problem(self, X=None, B=None):
        '''Set up the linear problem.

        Binds the (optionally new) vectors, wraps the operators and computes
        the initial residual :math:`R_0 = B - A X` as well as the
        preconditioned initial residual :math:`M R_0`.

        :param X: (optional) new initial guess.
        :param B: (optional) new right hand sides.

        :return: ``True`` if the problem is ready to be solved.
        '''
        if X is not None:
            self.X = X
        if B is not None:
            self.B = B

        self._is_set = False
        self._curr_X = self._curr_B = None
        self._rhs_index = []
        self._num_to_solve = 0
        self._ls_number = 0

        if self.A is None or self.B is None:
            return False

        flat_B, (B,) = utils.shape_vecs(numpy.asarray(self.B))
        if B.ndim != 2:
            raise utils.ArgumentError('B does not have shape==(N,k)')
        N, k = B.shape
        shape = (N, N)

        self._A = utils.get_linearoperator(shape, self.A)
        self._M = utils.get_linearoperator(shape, self.M)

        dtype = utils.find_common_dtype(self._A, B, self._M)
        if self.X is None:
            X = numpy.zeros((N, k), dtype=dtype)
        else:
            _, (X,) = utils.shape_vecs(numpy.asarray(self.X))
            if X.shape != B.shape:
                raise utils.ArgumentError(
                    'shape mismatch: X.shape={0} != B.shape={1}'
                    .format(X.shape, B.shape))
            # the solution is written into the caller's array unless the
            # dtype has to be widened
            dtype = numpy.result_type(X.dtype, dtype)
            if X.dtype != dtype:
                X = numpy.array(X, dtype=dtype)
        self.flat_vecs = flat_B
        self.X = X
        self.B = B
        self.N = N
        self.dtype = X.dtype

        self._R0 = self.get_residual(self.X, self.B)
        self._PR0 = self._M * self._R0
        self._is_set = True
        return True

    def is_problem_set(self):
        return self._is_set

    def get_operator(self):
        return self._A

    def get_lhs(self):
        '''The full solution block :math:`X`.'''
        return self.X

    def get_rhs(self):
        '''The full right hand side block :math:`B`.'''
        return self.B

    def get_init_res_vec(self):
        '''Initial residual :math:`R_0 = B - A X_0` for all right hand
        sides.'''
        return self._R0

    def get_init_prec_res_vec(self):
        '''Preconditioned initial residual :math:`M R_0` for all right hand
        sides.'''
        return self._PR0

    def get_ls_index(self):
        '''Column indices of the current linear systems; ``-1`` marks a
        placeholder column.'''
        return list(self._rhs_index)

    def get_ls_number(self):
        '''Number of times :py:meth:`set_ls_index` has been called since
        :py:meth:`set_problem`.'''
        return self._ls_number

    def get_num_to_solve(self):
        '''Number of non-placeholder columns in the current linear
        systems.'''
        return self._num_to_solve

    def get_curr_lhs_vec(self):
        return self._curr_X

    def get_curr_rhs_vec(self):
        return self._curr_B

    def set_ls_index(self, index):
        '''Select the current linear systems.

        :param index: sequence of column indices into :math:`B`. The value
          ``-1`` denotes an inert placeholder column: its right hand side is
          random, its initial guess is zero and it is never written back.

        The current solution columns are copies; they are written back to
        :math:`X` by :py:meth:`set_curr_ls`.
        '''
        if not self._is_set:
            raise utils.LinearProblemError(
                'set_ls_index() called before set_problem().')
        index = [int(i) for i in index]
        valid = [i for i in index if i != -1]
        num_rhs = self.B.shape[1]
        if len(set(valid)) != len(valid):
            raise utils.ArgumentError('duplicate indices in {0}'
                                      .format(index))
        for i in index:
            if i < -1 or i >= num_rhs:
                raise utils.ArgumentError(
                    'index {0} out of range [0, {1})'.format(i, num_rhs))

        self._rhs_index = index
        self._num_to_solve = len(valid)
        positions = [p for p, i in enumerate(index) if i != -1]

        if self._num_to_solve != len(index):
            # fill the placeholders with a random rhs and a zero solution
            self._curr_X = numpy.zeros((self.N, len(index)),
                                       dtype=self.dtype)
            self._curr_B = numpy.array(
                self._random.rand(self.N, len(index)), dtype=self.dtype)
            self._curr_X[:, positions] = self.X[:, valid]
            self._curr_B[:, positions] = self.B[:, valid]
        else:
            self._curr_X = self.X[:, index].copy()
            self._curr_B = self.B[:, index].copy()
        self._ls_number += 1
        logger.debug('current linear systems: %s', index)

    def set_curr_ls(self):
        '''Write the current solution columns back to :math:`X`.

        Placeholder columns are discarded. Afterwards no linear systems are
        current.
        '''
        if self._curr_X is not None:
            for p, i in enumerate(self._rhs_index):
                if i != -1:
                    self.X[:, i] = self._curr_X[:, p]
        self._curr_X = self._curr_B = None
        self._rhs_index = []
        self._num_to_solve = 0

    def apply_op(self, X):
        return self._A * X

    def apply_prec(self, X):
        return self._M * X

    def get_residual(self, X=None, B=None):
        '''Compute the explicit residual :math:`B - A X`.

        Defaults to the current linear systems.'''
        if X is None:
            X = self._curr_X
        if B is None:
            B = self._curr_B
        return B - self._A * X

    def __repr__(self):
        ret = 'LinearProblem {\n'
        for k in ['A', 'M', 'B']:
            op = self.__dict__[k]
            if op is not None:
                ret += '  ' + k + ': ' + op.__repr__() + '\n'
        ret += '  set: {0}\n'.format(self._is_set)
        return ret+'}'
