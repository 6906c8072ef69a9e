from .linsys import LinearProblem
from .solvers import BlockCgSolver, ReturnType


def block_cg(
    A,
    B,
    X0=None,
    M=None,
    tol=1e-8,
    maxiter=1000,
    block_size=1,
    **params
):
    assert len(A.shape) == 2
    assert A.shape[0] == A.shape[1]
    assert A.shape[1] == B.shape[0]

    # remaining keyword arguments are solver parameters, e.g.
    # adaptive_block_size=False or use_single_reduction=True
    params.update(
        convergence_tolerance=tol,
        maximum_iterations=maxiter,
        block_size=block_size,
    )

    problem = LinearProblem(A, X=X0, B=B, M=M)
    problem.set_problem()
    solver = BlockCgSolver(problem, params)
    result = solver.solve()

    X = problem.get_lhs()
    return X.reshape(B.shape) if result is ReturnType.CONVERGED else None, solver
