# -*- coding: utf8 -*-
'''
Status tests that decide when an iteration stops.

A status test is evaluated by an iteration via
:py:meth:`StatusTest.check_status` after every step and returns a
:py:class:`Status`. The iterations in :py:mod:`blockcg.iterations` return
from ``iterate()`` as soon as their status test returns
:py:attr:`Status.PASSED` or :py:attr:`Status.NAN`.
'''
import enum
import logging

import numpy

from . import utils

__all__ = ['Status', 'StatusTest', 'MaxIterationsTest', 'ResidualNormTest',
           'ComboTest', 'StatusTestOutput', 'norm_types', 'scale_types']

logger = logging.getLogger(__name__)

norm_types = {
    'OneNorm': '1-Norm',
    'TwoNorm': '2-Norm',
    'InfNorm': 'Inf-Norm'
    }

scale_types = {
    'None': None,
    'Norm of Initial Residual': 'Res0',
    'Norm of Preconditioned Initial Residual': 'Prec Res0',
    'Norm of RHS': 'RHS'
    }


class Status(enum.Enum):
    PASSED = 'Passed'
    FAILED = 'Failed'
    UNDEFINED = 'Undefined'
    # a non-finite value was observed
    NAN = 'NaN'


class StatusTest(object):
    '''Prototype of a status test.'''
    def __init__(self):
        self.status = Status.UNDEFINED

    def check_status(self, iteration):
        '''Evaluate the test for the current state of ``iteration``.'''
        raise NotImplementedError('check_status has to be overridden by '
                                  'the derived status test class.')

    def get_status(self):
        '''Status of the last call of :py:meth:`check_status`.'''
        return self.status

    def reset(self):
        self.status = Status.UNDEFINED

    def summary(self, indent=0):
        raise NotImplementedError('summary has to be overridden by '
                                  'the derived status test class.')

    def _status_mark(self):
        if self.status is Status.PASSED:
            return 'Passed.......'
        elif self.status is Status.FAILED:
            return 'Failed.......'
        elif self.status is Status.NAN:
            return 'NaN..........'
        return '**...........'

    def __repr__(self):
        return self.summary()


class MaxIterationsTest(StatusTest):
    '''Passes once the iteration count reaches ``max_iters``.'''
    def __init__(self, max_iters):
        super(MaxIterationsTest, self).__init__()
        self.max_iters = max_iters
        self.num_iters = 0

    @property
    def max_iters(self):
        return self._max_iters

    @max_iters.setter
    def max_iters(self, max_iters):
        if max_iters < 0:
            raise utils.ArgumentError('max_iters has to be non-negative.')
        self._max_iters = max_iters

    def check_status(self, iteration):
        self.num_iters = iteration.num_iters
        if self.num_iters >= self.max_iters:
            self.status = Status.PASSED
        else:
            self.status = Status.FAILED
        return self.status

    def get_num_iters(self):
        '''Iteration count seen in the last call of
        :py:meth:`check_status`.'''
        return self.num_iters

    def reset(self):
        super(MaxIterationsTest, self).reset()
        self.num_iters = 0

    def summary(self, indent=0):
        return '{0}{1}Number of Iterations = {2}{3}{4}'.format(
            ' '*indent, self._status_mark(), self.num_iters,
            ' == ' if self.num_iters == self.max_iters
            else (' > ' if self.num_iters > self.max_iters else ' < '),
            self.max_iters)


class ResidualNormTest(StatusTest):
    def __init__(self, tolerance, quorum=1, show_max_res_norm_only=False,
                 norm_type='TwoNorm', scale_type='Norm of Initial Residual'):
        r'''Relative residual norm test based on the native residuals.

        For every current linear system with global column index :math:`i`
        the test value

        .. math::

           \frac{\|r_i\|}{s_i}

        is computed where :math:`r_i` is the native residual of the
        iteration and :math:`s_i` is the scaling (if :math:`s_i=0`, the
        residual norm is used unscaled).

        :param tolerance: the column passes if its test value is less than
          or equal to ``tolerance``.
        :param quorum: (optional) number of columns that have to pass for the
          test to pass. ``None`` requires all current columns.
        :param show_max_res_norm_only: (optional) only report the largest
          test value in :py:meth:`summary`.
        :param norm_type: (optional) ``'OneNorm'``, ``'TwoNorm'`` or
          ``'InfNorm'``; the norm that is applied to the residuals.
        :param scale_type: (optional) ``'None'``,
          ``'Norm of Initial Residual'``,
          ``'Norm of Preconditioned Initial Residual'`` or ``'Norm of RHS'``.
          Scalings are computed in the 2-norm.

        Norm and scale type are fixed; build a new test to change them.
        '''
        super(ResidualNormTest, self).__init__()
        if norm_type not in norm_types:
            raise utils.ArgumentError(
                'Invalid residual norm \'{0}\'. Valid are {1}.'
                .format(norm_type, ', '.join(norm_types)))
        if scale_type not in scale_types:
            raise utils.ArgumentError(
                'Invalid residual scaling \'{0}\'. Valid are {1}.'
                .format(scale_type, ', '.join(scale_types)))
        self.tolerance = tolerance
        self.quorum = quorum
        self.show_max_res_norm_only = show_max_res_norm_only
        self.norm_type = norm_type
        self.scale_type = scale_type
        self.reset()

    def reset(self):
        super(ResidualNormTest, self).reset()
        self._first_call = True
        self._ls_number = None
        self._cur_ls_idx = []
        self._ind = []
        self.scale_vector = numpy.zeros(0)
        self.res_vector = numpy.zeros(0)
        self.test_vector = numpy.zeros(0)

    def _setup(self, problem):
        num_rhs = problem.get_rhs().shape[1]
        if self.scale_type == 'Norm of Initial Residual':
            self.scale_vector = utils.column_norms(problem.get_init_res_vec())
        elif self.scale_type == 'Norm of Preconditioned Initial Residual':
            self.scale_vector = utils.column_norms(
                problem.get_init_prec_res_vec())
        elif self.scale_type == 'Norm of RHS':
            self.scale_vector = utils.column_norms(problem.get_rhs())
        else:
            self.scale_vector = numpy.ones(num_rhs)
        self.res_vector = numpy.zeros(num_rhs)
        self.test_vector = numpy.zeros(num_rhs)
        self._first_call = False

    def check_status(self, iteration):
        problem = iteration.problem
        if self._first_call:
            self._setup(problem)
        if self._ls_number != problem.get_ls_number():
            self._ls_number = problem.get_ls_number()
            self._cur_ls_idx = problem.get_ls_index()

        R, norms = iteration.get_native_residuals()
        if norms is None or self.norm_type != 'TwoNorm':
            norms = utils.column_norms(R, self.norm_type)

        valid = []
        for pos, idx in enumerate(self._cur_ls_idx):
            if idx == -1:
                continue
            valid.append(idx)
            self.res_vector[idx] = norms[pos]
            if self.scale_vector[idx] != 0:
                self.test_vector[idx] = norms[pos] / self.scale_vector[idx]
            else:
                self.test_vector[idx] = norms[pos]

        if not utils.is_finite(self.test_vector[valid]):
            self._ind = []
            self.status = Status.NAN
            return self.status

        self._ind = [idx for idx in valid
                     if self.test_vector[idx] <= self.tolerance]
        quorum = len(valid) if self.quorum is None else self.quorum
        if len(self._ind) >= quorum and len(self._ind) > 0:
            self.status = Status.PASSED
        else:
            self.status = Status.FAILED
        return self.status

    def conv_indices(self):
        '''Global column indices that passed in the last check (in the order
        of the current linear systems).'''
        return list(self._ind)

    def get_test_value(self):
        '''Latest test value of every right hand side.'''
        return self.test_vector

    def get_res_norm_value(self):
        '''Latest residual norm of every right hand side.'''
        return self.res_vector

    def _description(self):
        res = '({0} Res Vec)'.format(norm_types[self.norm_type])
        scale = scale_types[self.scale_type]
        if scale is None:
            return res
        return '{0} / (2-Norm {1})'.format(res, scale)

    def summary(self, indent=0):
        lines = []
        valid = [idx for idx in self._cur_ls_idx if idx != -1]
        if self.show_max_res_norm_only and len(valid) > 1:
            value = numpy.max(self.test_vector[valid])
            lines.append('{0}{1}{2}: max = {3:.3e} {4} {5:.3e}'.format(
                ' '*indent, self._status_mark(), self._description(), value,
                '<' if value <= self.tolerance else '>', self.tolerance))
        else:
            for idx in valid:
                value = self.test_vector[idx]
                lines.append('{0}{1}{2}: [ {3} ] = {4:.3e} {5} {6:.3e}'
                             .format(' '*indent, self._status_mark(),
                                     self._description(), idx, value,
                                     '<' if value <= self.tolerance else '>',
                                     self.tolerance))
        if not lines:
            lines.append('{0}{1}{2}: no current linear systems'.format(
                ' '*indent, self._status_mark(), self._description()))
        return '\n'.join(lines)


class ComboTest(StatusTest):
    '''Combination of status tests.

    :param combo_type: ``'OR'`` passes if any of the tests passes, ``'AND'``
      passes if all tests pass.
    :param tests: the status tests.

    All tests are evaluated in every call so that each of them reflects the
    current state of the iteration. A :py:attr:`Status.NAN` of any test is
    returned as the combined status.
    '''
    def __init__(self, combo_type, *tests):
        super(ComboTest, self).__init__()
        if combo_type not in ['OR', 'AND']:
            raise utils.ArgumentError(
                'Invalid combination \'{0}\'. Valid are OR and AND.'
                .format(combo_type))
        self.combo_type = combo_type
        self.tests = list(tests)

    def add_status_test(self, test):
        if test is self:
            raise utils.ArgumentError('a combination cannot contain itself')
        self.tests.append(test)

    def check_status(self, iteration):
        statuses = [test.check_status(iteration) for test in self.tests]
        if Status.NAN in statuses:
            self.status = Status.NAN
        elif self.combo_type == 'OR':
            self.status = Status.PASSED if Status.PASSED in statuses \
                else Status.FAILED
        else:
            self.status = Status.PASSED \
                if statuses and all(s is Status.PASSED for s in statuses) \
                else Status.FAILED
        return self.status

    def reset(self):
        super(ComboTest, self).reset()
        for test in self.tests:
            test.reset()

    def summary(self, indent=0):
        lines = ['{0}{1}{2} Combination -> '.format(
            ' '*indent, self._status_mark(), self.combo_type)]
        for test in self.tests:
            lines.append(test.summary(indent+2))
        return '\n'.join(lines)


class StatusTestOutput(StatusTest):
    '''Logs the summary of a status test while it is checked.

    :param test: the status test that is evaluated.
    :param output_frequency: (optional) log the summary every
      ``output_frequency`` calls; non-positive values only log when the test
      passes.
    :param solver_desc: (optional) description that is prepended to the
      log messages.
    '''
    def __init__(self, test, output_frequency=-1, solver_desc=''):
        super(StatusTestOutput, self).__init__()
        self.test = test
        self.output_frequency = output_frequency
        self.solver_desc = solver_desc
        self.num_calls = 0

    def check_status(self, iteration):
        self.status = self.test.check_status(iteration)
        if self.output_frequency > 0 \
                and self.num_calls % self.output_frequency == 0 \
                or self.status is Status.PASSED:
            logger.info('%s iteration %d\n%s', self.solver_desc,
                        iteration.num_iters, self.test.summary(2))
        self.num_calls += 1
        return self.status

    def reset_num_calls(self):
        '''Reset the call counter that throttles the output.'''
        self.num_calls = 0

    def reset(self):
        super(StatusTestOutput, self).reset()
        self.test.reset()
        self.num_calls = 0

    def summary(self, indent=0):
        return self.test.summary(indent)
