import logging

import numpy
import pytest
from numpy.testing import assert_almost_equal, assert_array_almost_equal, \
    assert_equal

import blockcg
from blockcg.status import ComboTest, MaxIterationsTest, ResidualNormTest, \
    Status, StatusTestOutput


class FakeIteration(object):
    '''Provides what status tests read from an iteration.'''
    def __init__(self, problem, R=None, norms=None, num_iters=0):
        self.problem = problem
        self.R = R
        self.norms = norms
        self.num_iters = num_iters

    def get_native_residuals(self):
        return self.R, self.norms


def get_problem(index=(0, 1, 2)):
    # initial residual norms are 1, 2 and 4
    B = numpy.zeros((4, 3))
    B[0, 0] = 1.
    B[1, 1] = 2.
    B[2, 2] = 4.
    problem = blockcg.LinearProblem(numpy.diag([1., 2., 3., 4.]), B=B)
    problem.set_problem()
    problem.set_ls_index(list(index))
    return problem


def test_max_iterations():
    test = MaxIterationsTest(3)
    assert test.get_status() is Status.UNDEFINED
    iteration = FakeIteration(None, num_iters=2)
    assert test.check_status(iteration) is Status.FAILED
    iteration.num_iters = 3
    assert test.check_status(iteration) is Status.PASSED
    assert_equal(test.get_num_iters(), 3)
    assert 'Number of Iterations = 3 == 3' in test.summary()

    test.reset()
    assert test.get_status() is Status.UNDEFINED
    assert_equal(test.get_num_iters(), 0)

    test.max_iters = 0
    assert test.check_status(FakeIteration(None)) is Status.PASSED
    with pytest.raises(blockcg.utils.ArgumentError):
        test.max_iters = -1


def test_residual_norm():
    problem = get_problem()
    R = problem.get_init_res_vec() * numpy.array([0.5, 1e-10, 1.])
    test = ResidualNormTest(1e-8)
    status = test.check_status(FakeIteration(problem, R))
    assert status is Status.PASSED
    assert_equal(test.conv_indices(), [1])
    assert_array_almost_equal(test.get_test_value(), [0.5, 1e-10, 1.])
    assert_array_almost_equal(test.get_res_norm_value(), [0.5, 2e-10, 4.])
    assert 'Passed' in test.summary()


def test_residual_norm_failed():
    problem = get_problem()
    R = problem.get_init_res_vec() * 0.1
    test = ResidualNormTest(1e-8)
    assert test.check_status(FakeIteration(problem, R)) is Status.FAILED
    assert_equal(test.conv_indices(), [])


def test_residual_norm_native_norms():
    problem = get_problem()
    R = problem.get_init_res_vec()
    test = ResidualNormTest(1e-8)
    # norms provided by the iteration are used for the 2-norm
    status = test.check_status(FakeIteration(problem, R, norms=[0., 0., 0.]))
    assert status is Status.PASSED
    assert_equal(test.conv_indices(), [0, 1, 2])

    # but not for other norms
    test = ResidualNormTest(1e-8, norm_type='InfNorm')
    status = test.check_status(FakeIteration(problem, R, norms=[0., 0., 0.]))
    assert status is Status.FAILED


@pytest.mark.parametrize('scale_type, values', [
    ('None', [1., 2., 4.]),
    ('Norm of Initial Residual', [1., 1., 1.]),
    ('Norm of Preconditioned Initial Residual', [1., 1., 1.]),
    ('Norm of RHS', [1., 1., 1.]),
    ])
def test_residual_norm_scaling(scale_type, values):
    problem = get_problem()
    test = ResidualNormTest(1e-8, scale_type=scale_type)
    test.check_status(FakeIteration(problem, problem.get_init_res_vec()))
    assert_array_almost_equal(test.get_test_value(), values)


def test_residual_norm_zero_scale():
    B = numpy.zeros((3, 2))
    B[0, 1] = 1.
    problem = blockcg.LinearProblem(numpy.eye(3), B=B)
    problem.set_problem()
    problem.set_ls_index([0, 1])
    R = numpy.zeros((3, 2))
    R[1, 0] = 1e-3
    R[1, 1] = 1e-3
    test = ResidualNormTest(1e-8)
    test.check_status(FakeIteration(problem, R))
    assert_array_almost_equal(test.get_test_value(), [1e-3, 1e-3])


def test_residual_norm_quorum():
    problem = get_problem()
    R = problem.get_init_res_vec() * numpy.array([1e-10, 1e-10, 1.])
    iteration = FakeIteration(problem, R)
    assert ResidualNormTest(1e-8, quorum=2).check_status(iteration) \
        is Status.PASSED
    assert ResidualNormTest(1e-8, quorum=None).check_status(iteration) \
        is Status.FAILED
    iteration.R = problem.get_init_res_vec() * 1e-10
    assert ResidualNormTest(1e-8, quorum=None).check_status(iteration) \
        is Status.PASSED


def test_residual_norm_placeholder_and_global_indices():
    problem = get_problem(index=(2, -1))
    R = numpy.zeros((4, 2))
    R[0, 0] = 4e-10
    R[:, 1] = 1e10
    test = ResidualNormTest(1e-8)
    assert test.check_status(FakeIteration(problem, R)) is Status.PASSED
    assert_equal(test.conv_indices(), [2])
    assert_almost_equal(test.get_test_value()[2], 1e-10)
    assert_equal(test.get_test_value()[[0, 1]], [0., 0.])


def test_residual_norm_follows_ls_index():
    problem = get_problem()
    test = ResidualNormTest(1e-8)
    R = problem.get_init_res_vec() * numpy.array([0.5, 1e-10, 1.])
    test.check_status(FakeIteration(problem, R))

    # deflate column 1
    problem.set_curr_ls()
    problem.set_ls_index([0, 2])
    R = problem.get_init_res_vec()[:, [0, 2]] * numpy.array([1e-9, 0.25])
    assert test.check_status(FakeIteration(problem, R)) is Status.PASSED
    assert_equal(test.conv_indices(), [0])
    # the value of the deflated column is kept
    assert_array_almost_equal(test.get_test_value(), [1e-9, 1e-10, 0.25])


def test_residual_norm_nan():
    problem = get_problem()
    R = problem.get_init_res_vec().copy()
    R[0, 1] = numpy.nan
    test = ResidualNormTest(1e-8)
    assert test.check_status(FakeIteration(problem, R)) is Status.NAN
    assert_equal(test.conv_indices(), [])


def test_residual_norm_invalid_types():
    with pytest.raises(blockcg.utils.ArgumentError):
        ResidualNormTest(1e-8, norm_type='FooNorm')
    with pytest.raises(blockcg.utils.ArgumentError):
        ResidualNormTest(1e-8, scale_type='Norm of Something')


def test_residual_norm_summary_max_only():
    problem = get_problem()
    R = problem.get_init_res_vec() * numpy.array([0.5, 1e-10, 1.])
    test = ResidualNormTest(1e-8, show_max_res_norm_only=True)
    test.check_status(FakeIteration(problem, R))
    summary = test.summary()
    assert_equal(len(summary.splitlines()), 1)
    assert 'max' in summary

    test.show_max_res_norm_only = False
    assert_equal(len(test.summary().splitlines()), 3)


def test_combo():
    problem = get_problem()
    R = problem.get_init_res_vec()
    iteration = FakeIteration(problem, R, num_iters=5)
    max_iter_test = MaxIterationsTest(5)
    conv_test = ResidualNormTest(1e-8)

    combo = ComboTest('OR', max_iter_test, conv_test)
    assert combo.check_status(iteration) is Status.PASSED
    # all tests are evaluated
    assert conv_test.get_status() is Status.FAILED

    combo = ComboTest('AND', max_iter_test, conv_test)
    assert combo.check_status(iteration) is Status.FAILED
    assert 'AND Combination' in combo.summary()

    iteration.R = R.copy()
    iteration.R[0, 0] = numpy.nan
    combo = ComboTest('OR', max_iter_test, conv_test)
    assert combo.check_status(iteration) is Status.NAN

    combo.reset()
    assert max_iter_test.get_status() is Status.UNDEFINED
    assert conv_test.get_status() is Status.UNDEFINED

    with pytest.raises(blockcg.utils.ArgumentError):
        ComboTest('XOR', max_iter_test)
    with pytest.raises(blockcg.utils.ArgumentError):
        combo.add_status_test(combo)


def test_output(caplog):
    caplog.set_level(logging.INFO, logger='blockcg')
    problem = get_problem()
    iteration = FakeIteration(problem, problem.get_init_res_vec())
    test = StatusTestOutput(ComboTest('OR', MaxIterationsTest(10),
                                      ResidualNormTest(1e-8)),
                            output_frequency=-1, solver_desc='Test')
    assert test.check_status(iteration) is Status.FAILED
    assert_equal(len(caplog.records), 0)
    assert_equal(test.num_calls, 1)

    test.output_frequency = 2
    test.reset_num_calls()
    for _ in range(3):
        test.check_status(iteration)
    assert_equal(len(caplog.records), 2)
    assert 'Test' in caplog.records[0].getMessage()

    iteration.num_iters = 10
    caplog.clear()
    test.output_frequency = -1
    assert test.check_status(iteration) is Status.PASSED
    assert_equal(len(caplog.records), 1)
    assert caplog.records[0].levelno == logging.INFO

    test.reset()
    assert_equal(test.num_calls, 0)
    assert test.test.get_status() is Status.UNDEFINED
