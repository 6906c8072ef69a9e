import numpy
import pytest
from numpy.testing import assert_array_almost_equal, assert_equal

import blockcg
import test_utils
from blockcg.iterations import BlockCgIteration, BlockCgState, CgIteration, \
    CgSingleReductionIteration, CgSingleReductionState, CgState, \
    IterationResult, select_iteration
from blockcg.status import ComboTest, MaxIterationsTest, ResidualNormTest


def get_iteration(Iteration, A, B, M=None, maxiter=200, tol=1e-10,
                  **kwargs):
    problem = blockcg.LinearProblem(A, B=B, M=M)
    problem.set_problem()
    problem.set_ls_index(range(B.shape[1]))
    conv_test = ResidualNormTest(tol)
    status_test = ComboTest('OR', MaxIterationsTest(maxiter), conv_test)
    if Iteration is BlockCgIteration:
        kwargs.setdefault('ortho', blockcg.ortho.IcgsOrthoManager())
        kwargs.setdefault('block_size', B.shape[1])
    iteration = Iteration(problem, status_test, **kwargs)
    return iteration, problem, conv_test


def assert_converged(problem, conv_test, tol=1e-6):
    '''Checks the explicit residuals of the converged columns.'''
    conv_idx = conv_test.conv_indices()
    assert len(conv_idx) > 0
    A = problem.get_operator()
    X = problem.get_curr_lhs_vec()
    B = problem.get_curr_rhs_vec()
    index = problem.get_ls_index()
    for idx in conv_idx:
        pos = index.index(idx)
        res = numpy.linalg.norm(B[:, pos] - (A * X[:, [pos]])[:, 0])
        assert res <= tol * numpy.linalg.norm(B[:, pos])


@pytest.mark.parametrize('block_size, use_single_reduction, Iteration', [
    (1, False, CgIteration),
    (1, True, CgSingleReductionIteration),
    (2, False, BlockCgIteration),
    (2, True, BlockCgIteration),
    (5, False, BlockCgIteration),
    ])
def test_select_iteration(block_size, use_single_reduction, Iteration):
    assert select_iteration(block_size, use_single_reduction) is Iteration


@pytest.mark.parametrize('Iteration, kwargs', [
    (CgIteration, {}),
    (CgIteration, {'fold_convergence_detection': True}),
    (CgSingleReductionIteration, {}),
    (CgSingleReductionIteration, {'fold_convergence_detection': True}),
    ])
def test_cg(Iteration, kwargs):
    A = test_utils.get_matrix_spd_dense(200)
    B = test_utils.get_rhs(200, 1)
    iteration, problem, conv_test = get_iteration(Iteration, A, B, **kwargs)
    iteration.initialize(Iteration.State(), problem.get_residual())
    assert iteration.iterate() is IterationResult.STATUS_PASSED
    assert 0 < iteration.num_iters <= 100
    assert_converged(problem, conv_test)


@pytest.mark.parametrize('ortho', ['DGKS', 'ICGS', 'IMGS'])
def test_block_cg(ortho):
    A = test_utils.get_matrix_spd_dense(200)
    B = test_utils.get_rhs(200, 3)
    iteration, problem, conv_test = get_iteration(
        BlockCgIteration, A, B,
        ortho=blockcg.ortho.get_ortho_manager(ortho))
    iteration.initialize(BlockCgState(), problem.get_residual())
    assert iteration.iterate() is IterationResult.STATUS_PASSED
    assert 0 < iteration.num_iters <= 60
    assert_converged(problem, conv_test)
    R, norms = iteration.get_native_residuals()
    assert_equal(R.shape, (200, 3))
    assert norms is None


@pytest.mark.parametrize('Iteration', [CgIteration,
                                       CgSingleReductionIteration])
def test_cg_exact_preconditioner(Iteration):
    a = numpy.linspace(1, 10, 10)
    B = test_utils.get_rhs(10, 1)
    iteration, problem, conv_test = get_iteration(
        Iteration, numpy.diag(a), B, M=numpy.diag(1/a))
    iteration.initialize(Iteration.State(), problem.get_residual())
    assert iteration.iterate() is IterationResult.STATUS_PASSED
    assert_equal(iteration.num_iters, 1)
    assert_array_almost_equal(problem.get_curr_lhs_vec(), B / a[:, None])


def test_block_cg_invariant_subspace():
    # the right hand sides span an invariant subspace of A
    A = numpy.diag(numpy.linspace(1, 10, 10))
    B = numpy.eye(10)[:, :3]
    iteration, problem, conv_test = get_iteration(BlockCgIteration, A, B)
    iteration.initialize(BlockCgState(), problem.get_residual())
    assert iteration.iterate() is IterationResult.STATUS_PASSED
    assert_equal(iteration.num_iters, 1)
    assert_equal(conv_test.conv_indices(), [0, 1, 2])


def test_fold_native_norms():
    A = test_utils.get_matrix_spd_dense(10)
    B = test_utils.get_rhs(10, 1)
    iteration, problem, _ = get_iteration(CgIteration, A, B,
                                          fold_convergence_detection=True)
    iteration.initialize(CgState(), problem.get_residual())
    R, norms = iteration.get_native_residuals()
    assert_array_almost_equal(norms, blockcg.utils.column_norms(R))

    iteration, problem, _ = get_iteration(CgIteration, A, B)
    iteration.initialize(CgState(), problem.get_residual())
    _, norms = iteration.get_native_residuals()
    assert norms is None


def get_indefinite():
    A = numpy.diag([-1.] + list(numpy.linspace(1, 2, 9)))
    B = numpy.zeros((10, 1))
    B[0, 0] = 1.
    return A, B


@pytest.mark.parametrize('Iteration', [CgIteration,
                                       CgSingleReductionIteration])
def test_positive_definiteness(Iteration):
    A, B = get_indefinite()
    iteration, problem, _ = get_iteration(Iteration, A, B)
    iteration.initialize(Iteration.State(), problem.get_residual())
    with pytest.raises(blockcg.utils.CgPositiveDefiniteError):
        iteration.iterate()

    # without the assertion the step is carried out
    iteration, problem, conv_test = get_iteration(
        Iteration, A, B, assert_positive_definiteness=False)
    iteration.initialize(Iteration.State(), problem.get_residual())
    assert iteration.iterate() is IterationResult.STATUS_PASSED
    assert_array_almost_equal(problem.get_curr_lhs_vec(), -B)


def test_block_cg_loss_of_accuracy():
    A = -numpy.diag(numpy.linspace(1, 2, 10))
    B = numpy.eye(10)[:, :2]
    iteration, problem, _ = get_iteration(BlockCgIteration, A, B)
    iteration.initialize(BlockCgState(), problem.get_residual())
    with pytest.raises(blockcg.utils.CgLossOfAccuracyError):
        iteration.iterate()


def get_nan_operator(N):
    '''Operator that returns NaN from the second application on.'''
    calls = []

    def dot(X):
        calls.append(X.shape[1])
        if len(calls) > 1:
            return numpy.full(X.shape, numpy.nan)
        return X
    return blockcg.utils.LinearOperator((N, N), float, dot=dot)


@pytest.mark.parametrize('Iteration, B', [
    (CgIteration, test_utils.get_rhs(10, 1)),
    (CgSingleReductionIteration, test_utils.get_rhs(10, 1)),
    (BlockCgIteration, test_utils.get_rhs(10, 2)),
    ])
def test_numerical_failure(Iteration, B):
    iteration, problem, _ = get_iteration(Iteration, get_nan_operator(10), B)
    iteration.initialize(Iteration.State(), problem.get_init_res_vec())
    assert iteration.iterate() is IterationResult.NUMERICAL_FAILURE


def test_initialize_errors():
    A = test_utils.get_matrix_spd_dense(10)
    B = test_utils.get_rhs(10, 2)
    iteration, problem, _ = get_iteration(BlockCgIteration, A, B)
    with pytest.raises(blockcg.utils.CgInitializationError):
        iteration.iterate()
    with pytest.raises(blockcg.utils.CgInitializationError):
        iteration.get_native_residuals()
    with pytest.raises(blockcg.utils.CgInitializationError):
        iteration.initialize(CgState(), problem.get_residual())
    with pytest.raises(blockcg.utils.CgInitializationError):
        iteration.initialize(BlockCgState(), problem.get_residual()[:, :1])

    # changing the block size requires a new initialization
    iteration.initialize(BlockCgState(), problem.get_residual())
    iteration.set_block_size(1)
    with pytest.raises(blockcg.utils.CgInitializationError):
        iteration.iterate()
    with pytest.raises(blockcg.utils.ArgumentError):
        iteration.set_block_size(0)


@pytest.mark.parametrize('Iteration', [CgIteration,
                                       CgSingleReductionIteration])
def test_cg_block_size(Iteration):
    A = test_utils.get_matrix_spd_dense(10)
    B = test_utils.get_rhs(10, 1)
    iteration, _, _ = get_iteration(Iteration, A, B)
    with pytest.raises(blockcg.utils.ArgumentError):
        iteration.set_block_size(2)


def test_reset_num_iters():
    A = test_utils.get_matrix_spd_dense(10)
    B = test_utils.get_rhs(10, 1)
    iteration, problem, _ = get_iteration(CgIteration, A, B, maxiter=3)
    iteration.initialize(CgState(), problem.get_residual())
    iteration.iterate()
    assert_equal(iteration.num_iters, 3)
    iteration.reset_num_iters()
    assert_equal(iteration.num_iters, 0)
    iteration.reset_num_iters(2)
    assert_equal(iteration.num_iters, 2)


def test_state_reseed():
    state = BlockCgState()
    assert_equal(state.capacity, 0)
    assert state.reseed(10, 3, float)
    assert_equal(state.R.shape, (10, 3))

    # shrinking keeps the buffers
    buf = state._buffers['R']
    assert not state.reseed(10, 2, float)
    assert state._buffers['R'] is buf
    assert_equal(state.capacity, 3)
    assert_equal(state.P.shape, (10, 2))

    state.R = numpy.ones((10, 2))
    assert_equal(buf[:, :2], numpy.ones((10, 2)))

    assert state.reseed(10, 4, float)
    assert_equal(state.capacity, 4)
    assert state.reseed(10, 2, complex)
    assert_equal(state.R.dtype, numpy.dtype(complex))
    assert state.reseed(11, 2, complex)


def test_block_cg_reinitialize_with_smaller_block():
    A = test_utils.get_matrix_spd_dense(20)
    B = test_utils.get_rhs(20, 3)
    iteration, problem, conv_test = get_iteration(BlockCgIteration, A, B,
                                                  maxiter=2)
    state = BlockCgState()
    iteration.initialize(state, problem.get_residual())
    iteration.iterate()
    R, _ = iteration.get_native_residuals()
    R0 = R[:, [0, 2]].copy()

    problem.set_curr_ls()
    problem.set_ls_index([0, 2])
    iteration.set_block_size(2)
    iteration.initialize(state, R0)
    assert_equal(state.capacity, 3)
    assert_equal(iteration.get_state().R.shape, (20, 2))
    assert_array_almost_equal(iteration.get_native_residuals()[0], R0)


def test_single_reduction_state_type():
    A = test_utils.get_matrix_spd_dense(10)
    B = test_utils.get_rhs(10, 1)
    iteration, problem, _ = get_iteration(CgSingleReductionIteration, A, B)
    with pytest.raises(blockcg.utils.CgInitializationError):
        iteration.initialize(CgState(), problem.get_residual())
    iteration.initialize(CgSingleReductionState(), problem.get_residual())
