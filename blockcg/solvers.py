# -*- coding: utf8 -*-
'''
Block CG solver manager.

:py:class:`BlockCgSolver` solves all right hand sides of a
:py:class:`~blockcg.linsys.LinearProblem` block by block. Within a block,
right hand sides that converged are deflated: the block shrinks to the
remaining columns and the iteration is seeded again with their residuals.
'''
import enum
import logging
import warnings

from . import utils
from .iterations import IterationResult, select_iteration
from .ortho import DgksOrthoManager, get_ortho_manager
from .parameters import Parameters
from .status import (ComboTest, MaxIterationsTest, ResidualNormTest, Status,
                     StatusTestOutput)

__all__ = ['BlockCgSolver', 'ReturnType', 'block_indices', 'partition']

logger = logging.getLogger(__name__)


class ReturnType(enum.Enum):
    CONVERGED = 'Converged'
    UNCONVERGED = 'Unconverged'


def block_indices(start, num_rhs_left, block_size, adaptive):
    '''Column indices of the next block.

    :param start: index of the first right hand side of the block.
    :param num_rhs_left: number of right hand sides that remain.
    :param block_size: the configured block size.
    :param adaptive: if ``True`` the block holds at most ``num_rhs_left``
      columns. Otherwise it always holds ``block_size`` columns and the
      missing ones are filled with the placeholder ``-1``.
    '''
    num_curr = min(num_rhs_left, block_size)
    indices = list(range(start, start + num_curr))
    if not adaptive:
        indices += [-1]*(block_size - num_curr)
    return indices


def partition(num_rhs, block_size, adaptive):
    '''All blocks that :py:meth:`BlockCgSolver.solve` processes for
    ``num_rhs`` right hand sides.'''
    blocks = []
    start = 0
    while start < num_rhs:
        blocks.append(block_indices(start, num_rhs - start, block_size,
                                    adaptive))
        start += min(num_rhs - start, block_size)
    return blocks


class BlockCgSolver(object):
    def __init__(self, problem=None, params=None):
        '''Solver manager for CG with blocks of right hand sides.

        :param problem: (optional) the
          :py:class:`~blockcg.linsys.LinearProblem`. It has to be set up
          (see :py:meth:`~blockcg.linsys.LinearProblem.set_problem`) before
          :py:meth:`solve` is called.
        :param params: (optional) a :py:class:`~blockcg.parameters.Parameters`
          instance or a mapping that is validated with
          :py:meth:`~blockcg.parameters.Parameters.from_dict`.

        After :py:meth:`solve` the following quantities are available:

        * :py:meth:`get_num_iters`: the iteration count of the last block.
        * :py:meth:`achieved_tol`: the largest relative residual norm over
          all right hand sides.
        * ``timings``: a :py:class:`~blockcg.utils.Timings` instance.
        '''
        self.problem = problem
        self.params = None

        self.ortho = None
        self.max_iter_test = None
        self.conv_test = None
        self.combo_test = None
        self.output_test = None
        self.state = None
        self.iteration = None

        self.num_iters = 0
        self.achieved_tolerance = 0.
        self.timings = utils.Timings()

        self.set_parameters(params)

    def set_problem(self, problem):
        self.problem = problem

    def get_problem(self):
        return self.problem

    def get_parameters(self):
        return self.params

    @staticmethod
    def get_valid_parameters():
        '''The default :py:class:`~blockcg.parameters.Parameters`.'''
        return Parameters.defaults()

    def set_parameters(self, params):
        '''Set new parameters.

        :param params: a :py:class:`~blockcg.parameters.Parameters` instance
          or a mapping. Values that are missing in a mapping are kept from
          the current parameters.

        The status tests and the orthogonalization manager are updated
        according to the changed fields.
        '''
        if isinstance(params, Parameters):
            new = Parameters.from_dict(params._asdict())
        else:
            new = Parameters.from_dict(params, base=self.params)
        changed = new.changed(self.params)
        self.params = new
        self._update_collaborators(changed)

    def _update_collaborators(self, changed):
        p = self.params

        # orthogonalization
        if self.ortho is None or 'orthogonalization' in changed:
            self.ortho = get_ortho_manager(p.orthogonalization,
                                           p.orthogonalization_constant)
        elif 'orthogonalization_constant' in changed \
                and isinstance(self.ortho, DgksOrthoManager) \
                and p.orthogonalization_constant > 0:
            self.ortho.dep_tol = p.orthogonalization_constant

        # status tests
        rebuild = self.conv_test is None \
            or 'residual_norm' in changed \
            or 'implicit_residual_scaling' in changed
        if self.max_iter_test is None:
            self.max_iter_test = MaxIterationsTest(p.maximum_iterations)
        else:
            self.max_iter_test.max_iters = p.maximum_iterations
        if rebuild:
            self.conv_test = ResidualNormTest(
                p.convergence_tolerance, quorum=1,
                show_max_res_norm_only=p.show_maximum_residual_norm_only,
                norm_type=p.residual_norm,
                scale_type=p.implicit_residual_scaling)
            self.combo_test = ComboTest('OR', self.max_iter_test,
                                        self.conv_test)
            self.output_test = StatusTestOutput(
                self.combo_test, output_frequency=p.output_frequency,
                solver_desc=self._solver_desc())
        else:
            self.conv_test.tolerance = p.convergence_tolerance
            self.conv_test.show_max_res_norm_only = \
                p.show_maximum_residual_norm_only
            self.output_test.output_frequency = p.output_frequency
            self.output_test.solver_desc = self._solver_desc()

    def _solver_desc(self):
        return '{0}: {1}'.format(self.params.timer_label,
                                 self.__class__.__name__)

    def _timer_name(self):
        return '{0} total solve time'.format(self._solver_desc())

    def reset(self, problem=True):
        '''Set up the linear problem again (with its current vectors).'''
        if problem and self.problem is not None:
            self.problem.set_problem()

    def get_num_iters(self):
        return self.num_iters

    def achieved_tol(self):
        return self.achieved_tolerance

    def is_loa_detected(self):
        '''Loss of accuracy is not detected by CG.'''
        return False

    def solve(self):
        '''Solve all linear systems of the problem.

        :return: :py:attr:`ReturnType.CONVERGED` if all right hand sides
          converged, :py:attr:`ReturnType.UNCONVERGED` otherwise.
        '''
        if self.problem is None or not self.problem.is_problem_set():
            raise utils.LinearProblemError(
                'The linear problem is not ready, call set_problem() on it '
                'before solve().')
        with self.timings[self._timer_name()]:
            return self._solve()

    def _new_iteration(self, block_size):
        p = self.params
        Iteration = select_iteration(block_size, p.use_single_reduction)
        if not isinstance(self.state, Iteration.State):
            self.state = Iteration.State()
        kwargs = {'block_size': block_size,
                  'assert_positive_definiteness':
                  p.assert_positive_definiteness}
        if block_size == 1:
            kwargs['fold_convergence_detection'] = \
                p.fold_convergence_detection_into_allreduce
            return Iteration(self.problem, self.output_test, **kwargs)
        return Iteration(self.problem, self.output_test, self.ortho,
                         **kwargs)

    def _solve(self):
        problem = self.problem
        p = self.params
        block_size = p.block_size
        adaptive = p.adaptive_block_size

        start = 0
        num_rhs_left = problem.get_rhs().shape[1]
        self.output_test.reset()
        self.num_iters = 0
        self.achieved_tolerance = 0.
        is_converged = True

        while num_rhs_left > 0:
            num_curr = min(num_rhs_left, block_size)
            curr_idx = block_indices(start, num_rhs_left, block_size,
                                     adaptive)
            curr_rhs_idx = curr_idx[:num_curr]
            problem.set_ls_index(curr_idx)
            logger.debug('block %s', curr_idx)

            iteration = self._new_iteration(len(curr_idx))
            self.iteration = iteration
            iteration.reset_num_iters()
            self.output_test.reset_num_calls()
            iteration.initialize(self.state, problem.get_residual())

            while True:
                try:
                    result = iteration.iterate()
                except Exception:
                    logger.error('%s: exception in iterate() at iteration %d',
                                 self._solver_desc(), iteration.num_iters,
                                 exc_info=True)
                    raise

                if result is IterationResult.NUMERICAL_FAILURE:
                    self.achieved_tolerance = 1.
                    problem.get_lhs()[:] = 0
                    self.num_iters = self.max_iter_test.get_num_iters()
                    warnings.warn('{0}: NaN has been detected, the solution '
                                  'is set to zero.'.format(
                                      self._solver_desc()))
                    return ReturnType.UNCONVERGED

                if self.conv_test.get_status() is Status.PASSED:
                    conv_idx = self.conv_test.conv_indices()
                    if len(conv_idx) == len(curr_rhs_idx):
                        break

                    # deflate the converged columns
                    problem.set_curr_ls()
                    positions = [pos for pos, idx in enumerate(curr_rhs_idx)
                                 if idx not in conv_idx]
                    curr_rhs_idx = [curr_rhs_idx[pos] for pos in positions]
                    problem.set_ls_index(curr_rhs_idx)
                    R, _ = iteration.get_native_residuals()
                    R0 = R[:, positions].copy()
                    logger.debug('deflated %s, remaining %s', conv_idx,
                                 curr_rhs_idx)
                    iteration.set_block_size(len(positions))
                    iteration.initialize(self.state, R0)
                elif self.max_iter_test.get_status() is Status.PASSED:
                    is_converged = False
                    break
                else:
                    raise utils.InternalConsistencyError(
                        'iterate() returned but neither the convergence test '
                        'nor the maximum iteration test passed.')

            problem.set_curr_ls()
            start += num_curr
            num_rhs_left -= num_curr

        logger.info('%s final summary\n%s', self._solver_desc(),
                    self.combo_test.summary(2))

        self.num_iters = self.max_iter_test.get_num_iters()
        test_values = self.conv_test.get_test_value()
        if len(test_values) > 0:
            self.achieved_tolerance = float(max(test_values))
        return ReturnType.CONVERGED if is_converged else ReturnType.UNCONVERGED

    def __repr__(self):
        p = self.params
        return ('{0}(block_size={1}, adaptive_block_size={2}, '
                'maximum_iterations={3}, convergence_tolerance={4}, '
                'orthogonalization={5})').format(
                    self.__class__.__name__, p.block_size,
                    p.adaptive_block_size, p.maximum_iterations,
                    p.convergence_tolerance, p.orthogonalization)
