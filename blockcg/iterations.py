# -*- coding: utf8 -*-
'''
CG iterations for blocks of right hand sides.

An iteration advances the current linear systems of a
:py:class:`~blockcg.linsys.LinearProblem` until its status test passes.
All iterations share the same contract:

* ``initialize(state, R0)`` seeds the iteration with a state object (see
  :py:class:`CgState`, :py:class:`CgSingleReductionState` and
  :py:class:`BlockCgState`) and the initial residual block ``R0``.
* ``iterate()`` carries out steps until the status test passes and returns
  an :py:class:`IterationResult`.
* ``get_native_residuals()`` returns the residuals of the recurrence.
* ``set_block_size(n)`` changes the number of columns; the iteration has to
  be initialized again afterwards.

The state object is owned by the caller and can be handed from one
``initialize`` call to the next; its buffers are reused as long as they are
large enough.
'''
import enum
import logging

import numpy
import scipy.linalg

from . import utils
from .status import Status

__all__ = ['IterationResult', 'CgState', 'CgSingleReductionState',
           'BlockCgState', 'CgIteration', 'CgSingleReductionIteration',
           'BlockCgIteration', 'select_iteration']

logger = logging.getLogger(__name__)


class IterationResult(enum.Enum):
    STATUS_PASSED = 'status passed'
    NUMERICAL_FAILURE = 'numerical failure'


def _block_view(name):
    def fget(self):
        return self._buffers[name][:, :self.block_size]

    def fset(self, value):
        self._buffers[name][:, :self.block_size] = value
    return property(fget, fset, doc='Current columns of ``{0}``.'
                    .format(name))


class _CgStateBase(object):
    '''Storage for the vectors of a CG iteration.

    The vectors are kept in buffers with a column capacity. Shrinking the
    block size only narrows the visible columns.
    '''
    _vectors = ()

    def __init__(self):
        self.block_size = 0
        self._buffers = {}

    @property
    def capacity(self):
        if not self._buffers:
            return 0
        return self._buffers[self._vectors[0]].shape[1]

    def reseed(self, N, block_size, dtype):
        '''Prepare the state for ``block_size`` columns of length ``N``.

        :return: ``True`` if the buffers had to be reallocated.
        '''
        buf = self._buffers.get(self._vectors[0])
        if buf is None or buf.shape[0] != N \
                or buf.shape[1] < block_size \
                or numpy.result_type(buf.dtype, dtype) != buf.dtype:
            self._buffers = dict(
                (name, numpy.zeros((N, block_size), dtype=dtype))
                for name in self._vectors)
            self.block_size = block_size
            return True
        self.block_size = block_size
        return False


class CgState(_CgStateBase):
    '''State of :py:class:`CgIteration`.'''
    _vectors = ('R', 'Z', 'P', 'AP')
    R = _block_view('R')
    Z = _block_view('Z')
    P = _block_view('P')
    AP = _block_view('AP')

    def __init__(self):
        super(CgState, self).__init__()
        self.rHz = None


class CgSingleReductionState(_CgStateBase):
    '''State of :py:class:`CgSingleReductionIteration`.

    ``S`` holds :math:`AP` and ``W`` holds :math:`AZ`.'''
    _vectors = ('R', 'Z', 'P', 'S', 'W')
    R = _block_view('R')
    Z = _block_view('Z')
    P = _block_view('P')
    S = _block_view('S')
    W = _block_view('W')

    def __init__(self):
        super(CgSingleReductionState, self).__init__()
        self.rHz = None
        self.delta = None
        self.alpha = None


class BlockCgState(_CgStateBase):
    '''State of :py:class:`BlockCgIteration`.

    ``chol`` holds the Cholesky factorization of :math:`P^*AP` of the last
    step.'''
    _vectors = ('R', 'Z', 'P', 'AP')
    R = _block_view('R')
    Z = _block_view('Z')
    P = _block_view('P')
    AP = _block_view('AP')

    def __init__(self):
        super(BlockCgState, self).__init__()
        self.chol = None


class _CgIterationBase(object):
    '''Prototype of a CG iteration.'''
    State = None

    def __init__(self, problem, status_test,
                 block_size=1,
                 assert_positive_definiteness=True
                 ):
        '''
        :param problem: the :py:class:`~blockcg.linsys.LinearProblem` whose
          current linear systems are solved.
        :param status_test: the status test that is checked before every
          step, see :py:mod:`blockcg.status`.
        :param block_size: (optional) number of columns.
        :param assert_positive_definiteness: (optional) raise
          :py:class:`~blockcg.utils.CgPositiveDefiniteError` if a curvature
          :math:`p^*Ap\\leq 0` is encountered.
        '''
        self.problem = problem
        self.status_test = status_test
        self.assert_positive_definiteness = assert_positive_definiteness
        self.num_iters = 0
        self.state = None
        self.initialized = False
        self._norms = None
        self.set_block_size(block_size)

    def set_block_size(self, block_size):
        '''Set the number of columns. Requires a new :py:meth:`initialize`.
        '''
        if block_size <= 0:
            raise utils.ArgumentError('block size has to be positive.')
        self.block_size = block_size
        self.initialized = False

    def reset_num_iters(self, num_iters=0):
        self.num_iters = num_iters

    def get_state(self):
        return self.state

    def get_native_residuals(self):
        '''Return the residual block of the recurrence.

        :return: ``R, norms`` where ``norms`` are the 2-norms of the columns
          of ``R`` if the iteration computed them anyway, otherwise
          ``None``.
        '''
        if self.state is None:
            raise utils.CgInitializationError(
                'get_native_residuals() called before initialize().')
        return self.state.R, self._norms

    def initialize(self, state, R0):
        '''Seed the iteration.

        :param state: an instance of ``self.State``; its buffers are reused
          if possible.
        :param R0: the initial residual block with
          ``R0.shape == (N, block_size)``.
        '''
        if not isinstance(state, self.State):
            raise utils.CgInitializationError(
                '{0} requires a {1}, got {2}.'.format(
                    self.__class__.__name__, self.State.__name__,
                    type(state).__name__))
        if R0.ndim != 2 or R0.shape[1] != self.block_size:
            raise utils.CgInitializationError(
                'R0 has {0} columns but the block size is {1}.'.format(
                    R0.shape[1] if R0.ndim == 2 else 1, self.block_size))
        dtype = numpy.result_type(R0.dtype,
                                  self.problem.get_curr_lhs_vec().dtype)
        if state.reseed(R0.shape[0], self.block_size, dtype):
            logger.debug('%s: allocated state for %d columns',
                         self.__class__.__name__, self.block_size)
        state.R = R0
        self.state = state
        self._norms = None
        self._initialize()
        self.initialized = True

    def iterate(self):
        '''Carry out steps until the status test passes.

        :return: :py:attr:`IterationResult.STATUS_PASSED` if the status test
          passed or :py:attr:`IterationResult.NUMERICAL_FAILURE` if a
          non-finite value was encountered.
        '''
        if not self.initialized:
            raise utils.CgInitializationError(
                'iterate() called before initialize().')
        while True:
            status = self.status_test.check_status(self)
            if status is Status.NAN:
                return IterationResult.NUMERICAL_FAILURE
            if status is Status.PASSED:
                return IterationResult.STATUS_PASSED
            if not self._step():
                return IterationResult.NUMERICAL_FAILURE

    def _initialize(self):
        raise NotImplementedError('_initialize has to be overridden by '
                                  'the derived iteration class.')

    def _step(self):
        '''Carry out one step. Returns ``False`` on non-finite values.'''
        raise NotImplementedError('_step has to be overridden by '
                                  'the derived iteration class.')


class CgIteration(_CgIterationBase):
    r'''Preconditioned CG method for a single right hand side.

    Memory consumption is 4 vectors.

    :param fold_convergence_detection: (optional) compute
      :math:`\|r\|_2^2` in the same inner product call as
      :math:`\langle r, Mr\rangle` and report it as the native residual
      norm.
    '''
    State = CgState

    def __init__(self, problem, status_test,
                 fold_convergence_detection=False, **kwargs):
        self.fold_convergence_detection = fold_convergence_detection
        super(CgIteration, self).__init__(problem, status_test, **kwargs)

    def set_block_size(self, block_size):
        if block_size != 1:
            raise utils.ArgumentError(
                '{0} only supports a block size of 1.'
                .format(self.__class__.__name__))
        super(CgIteration, self).set_block_size(block_size)

    def _update_rHz(self):
        state = self.state
        if self.fold_convergence_detection:
            ip = utils.inner(state.R, numpy.c_[state.Z, state.R])
            state.rHz = ip[0, 0]
            self._norms = numpy.sqrt(numpy.abs(ip[0, 1:]))
        else:
            state.rHz = utils.inner(state.R, state.Z)[0, 0]

    def _initialize(self):
        state = self.state
        state.Z = self.problem.apply_prec(state.R)
        state.P = state.Z
        self._update_rHz()
        self._update_direction = False

    def _step(self):
        state = self.state
        if self._update_direction:
            # rHz_old was stored in the previous step
            state.P = state.Z + (state.rHz / self._rHz_old) * state.P

        state.AP = self.problem.apply_op(state.P)
        pAp = utils.inner(state.P, state.AP)[0, 0]
        if not utils.is_finite(pAp):
            return False
        if self.assert_positive_definiteness and pAp.real <= 0:
            raise utils.CgPositiveDefiniteError(
                'Iter {0}: p^H*A*p = {1} <= 0. Is the operator positive '
                'definite?'.format(self.num_iters, pAp))
        alpha = state.rHz / pAp
        if not utils.is_finite(alpha):
            return False

        X = self.problem.get_curr_lhs_vec()
        X += alpha * state.P
        state.R = state.R - alpha * state.AP
        state.Z = self.problem.apply_prec(state.R)

        self._rHz_old = state.rHz
        self._update_rHz()
        self._update_direction = True
        self.num_iters += 1
        return utils.is_finite(state.rHz)


class CgSingleReductionIteration(_CgIterationBase):
    r'''CG method with a single reduction per step (Chronopoulos, Gear).

    Mathematically equivalent to :py:class:`CgIteration`, but the inner
    products :math:`\langle r, Mr\rangle` and :math:`\langle AMr, Mr\rangle`
    (and :math:`\|r\|_2^2` if ``fold_convergence_detection`` is set) are
    computed in one call, which is one collective reduction in a distributed
    setting. One additional vector is stored.
    '''
    State = CgSingleReductionState

    def __init__(self, problem, status_test,
                 fold_convergence_detection=False, **kwargs):
        self.fold_convergence_detection = fold_convergence_detection
        super(CgSingleReductionIteration, self).__init__(
            problem, status_test, **kwargs)

    def set_block_size(self, block_size):
        if block_size != 1:
            raise utils.ArgumentError(
                '{0} only supports a block size of 1.'
                .format(self.__class__.__name__))
        super(CgSingleReductionIteration, self).set_block_size(block_size)

    def _reduce(self):
        state = self.state
        right = numpy.c_[state.Z, state.R] \
            if self.fold_convergence_detection else state.Z
        ip = utils.inner(numpy.c_[state.R, state.W], right)
        state.rHz = ip[0, 0].real
        state.delta = ip[1, 0].real
        if self.fold_convergence_detection:
            self._norms = numpy.sqrt(numpy.abs(ip[0, 1:]))

    def _initialize(self):
        state = self.state
        state.Z = self.problem.apply_prec(state.R)
        state.W = self.problem.apply_op(state.Z)
        self._reduce()
        state.alpha = None

    def _step(self):
        state = self.state
        if state.alpha is None:
            pAp = state.delta
            beta = 0
        else:
            beta = state.rHz / self._rHz_old
            # p^H A p from the recurrence
            pAp = state.delta - beta * state.rHz / state.alpha
        if not utils.is_finite(pAp, beta):
            return False
        if self.assert_positive_definiteness and pAp <= 0:
            raise utils.CgPositiveDefiniteError(
                'Iter {0}: p^H*A*p = {1} <= 0. Is the operator positive '
                'definite?'.format(self.num_iters, pAp))
        alpha = state.rHz / pAp
        if not utils.is_finite(alpha):
            return False

        if state.alpha is None:
            state.P = state.Z
            state.S = state.W
        else:
            state.P = state.Z + beta * state.P
            state.S = state.W + beta * state.S
        state.alpha = alpha

        X = self.problem.get_curr_lhs_vec()
        X += alpha * state.P
        state.R = state.R - alpha * state.S
        state.Z = self.problem.apply_prec(state.R)
        state.W = self.problem.apply_op(state.Z)

        self._rHz_old = state.rHz
        self._reduce()
        self.num_iters += 1
        return utils.is_finite(state.rHz, state.delta)


class BlockCgIteration(_CgIterationBase):
    r'''Block CG method (O'Leary).

    All current right hand sides share one block Krylov subspace. In each
    step the coefficients

    .. math::

       \alpha = (P^*AP)^{-1} P^*R, \quad
       \beta = -(P^*AP)^{-1} (AP)^*Z

    are obtained with a Cholesky factorization of :math:`P^*AP` and the new
    block of search directions :math:`Z + P\beta` is orthonormalized with
    the provided orthogonalization manager (see :py:mod:`blockcg.ortho`).

    :param ortho: an orthogonalization manager.
    '''
    State = BlockCgState

    def __init__(self, problem, status_test, ortho, **kwargs):
        self.ortho = ortho
        super(BlockCgIteration, self).__init__(problem, status_test,
                                               **kwargs)

    def _initialize(self):
        state = self.state
        state.Z = self.problem.apply_prec(state.R)
        state.P = state.Z
        state.chol = None

    def _step(self):
        state = self.state
        if state.chol is not None:
            beta = scipy.linalg.cho_solve(state.chol,
                                          -utils.inner(state.AP, state.Z),
                                          check_finite=False)
            if not utils.is_finite(beta):
                return False
            P = state.Z + numpy.dot(state.P, beta)
            rank, _ = self.ortho.normalize(P)
            if rank != self.block_size:
                raise utils.CgOrthoFailure(
                    'Iter {0}: block of search directions has rank {1} < {2}.'
                    .format(self.num_iters, rank, self.block_size))
            state.P = P

        state.AP = self.problem.apply_op(state.P)
        pAp = utils.inner(state.P, state.AP)
        if not utils.is_finite(pAp):
            return False
        try:
            chol = scipy.linalg.cho_factor(pAp, lower=False,
                                           check_finite=False)
        except numpy.linalg.LinAlgError as e:
            raise utils.CgLossOfAccuracyError(
                'Iter {0}: Cholesky factorization of P^H*A*P failed ({1}). '
                'Is the operator positive definite?'
                .format(self.num_iters, e))
        alpha = scipy.linalg.cho_solve(chol, utils.inner(state.P, state.R),
                                       check_finite=False)
        if not utils.is_finite(alpha):
            return False

        X = self.problem.get_curr_lhs_vec()
        X += numpy.dot(state.P, alpha)
        state.R = state.R - numpy.dot(state.AP, alpha)
        state.Z = self.problem.apply_prec(state.R)
        state.chol = chol
        self.num_iters += 1
        return True


def select_iteration(block_size, use_single_reduction=False):
    '''Select the iteration class for the given block size.

    :param block_size: number of columns that are iterated together.
    :param use_single_reduction: (optional) use
      :py:class:`CgSingleReductionIteration` if ``block_size == 1``.
    '''
    if block_size == 1:
        if use_single_reduction:
            return CgSingleReductionIteration
        return CgIteration
    return BlockCgIteration
