import pytest

from aiesolver.solver import (
    AiePart,
    AieQos,
    AieQosCap,
    AllocRequest,
    CdoParts,
    ClockList,
    InitConfig,
    InvalidRequestError,
    LoadAction,
    NoResourceError,
    ResourceExistsError,
    Solver,
    SolverActions,
)


class RecordingActions(SolverActions):
    def __init__(self, fail_load=False, fail_dpm=False):
        self.loaded = []
        self.unloaded = []
        self.levels = []
        self.fail_load = fail_load
        self.fail_dpm = fail_dpm

    def load_hwctx(self, ctx, action):
        if self.fail_load:
            raise RuntimeError("load failed")
        self.loaded.append((ctx, action))

    def unload_hwctx(self, ctx):
        self.unloaded.append(ctx)

    def set_dft_dpm_level(self, ddev, level):
        if self.fail_dpm:
            raise RuntimeError("dpm failed")
        self.levels.append((ddev, level))


CLOCKS = (400, 800, 1200)


def make_solver(total_col=4, actions=None, ddev="dev0"):
    actions = actions or RecordingActions()
    cfg = InitConfig(
        total_col=total_col,
        sys_eff_factor=1,
        clk_list=ClockList(CLOCKS),
        ddev=ddev,
        actions=actions,
    )
    return Solver(cfg), actions


def req(rid, start_cols, ncols, qos=None, opc=1000):
    return AllocRequest(
        rid=rid,
        cdo=CdoParts(start_cols=start_cols, ncols=ncols, qos_cap=AieQosCap(opc=opc)),
        rqos=qos or AieQos(),
    )


def test_allocates_first_free_start_column():
    solver, actions = make_solver()
    first = solver.allocate_resource(req(1, [0, 1, 2, 3], 1), "a")
    second = solver.allocate_resource(req(2, [0, 1, 2, 3], 1), "b")
    assert first == LoadAction(rid=1, part=AiePart(start_col=0, ncols=1))
    assert second.part == AiePart(start_col=1, ncols=1)
    assert [ctx for ctx, _ in actions.loaded] == ["a", "b"]


def test_too_many_columns_is_invalid():
    solver, actions = make_solver(total_col=2)
    with pytest.raises(InvalidRequestError):
        solver.allocate_resource(req(1, [0], 3), "a")
    assert actions.loaded == []


def test_duplicate_rid_rejected():
    solver, _ = make_solver()
    solver.allocate_resource(req(7, [0, 1], 1), "a")
    with pytest.raises(ResourceExistsError):
        solver.allocate_resource(req(7, [0, 1], 1), "b")


def test_release_unknown_rid():
    solver, _ = make_solver()
    with pytest.raises(NoResourceError):
        solver.release_resource(99)


def test_release_calls_unload_with_context():
    solver, actions = make_solver()
    solver.allocate_resource(req(1, [0], 2), "ctx-one")
    solver.release_resource(1)
    assert actions.unloaded == ["ctx-one"]
    with pytest.raises(NoResourceError):
        solver.release_resource(1)


def test_no_free_and_no_shareable_partition():
    solver, _ = make_solver(total_col=2)
    solver.allocate_resource(req(1, [0], 2), "a")
    with pytest.raises(NoResourceError):
        solver.allocate_resource(req(2, [0], 1), "b")


def test_shared_partition_freed_only_after_last_release():
    solver, _ = make_solver(total_col=2)
    a = solver.allocate_resource(req(1, [0], 2), "a")
    b = solver.allocate_resource(req(2, [0], 2), "b")
    assert a.part == b.part
    solver.release_resource(1)
    with pytest.raises(NoResourceError):
        solver.allocate_resource(req(3, [0], 1), "c")
    solver.release_resource(2)
    c = solver.allocate_resource(req(3, [0], 1), "c")
    assert c.part == AiePart(start_col=0, ncols=1)


def test_least_shared_partition_is_chosen():
    solver, _ = make_solver(total_col=2)
    solver.allocate_resource(req(1, [0], 1), "a")
    solver.allocate_resource(req(2, [1], 1), "b")
    c = solver.allocate_resource(req(3, [0, 1], 1), "c")
    d = solver.allocate_resource(req(4, [0, 1], 1), "d")
    assert c.part.start_col == 0
    assert d.part.start_col == 1


def test_no_qos_uses_max_dpm_level():
    solver, actions = make_solver(ddev="devX")
    solver.allocate_resource(req(1, [0], 1), "a")
    assert actions.levels == [("devX", len(CLOCKS) - 1)]


def test_qos_selects_lowest_sufficient_level():
    solver, actions = make_solver()
    qos = AieQos(gops=1, fps=30)
    solver.allocate_resource(req(1, [0], 1, qos=qos, opc=50), "a")
    assert actions.levels[-1][1] == 1


def test_dpm_level_never_below_existing_sessions():
    solver, actions = make_solver()
    solver.allocate_resource(req(1, [0], 1), "a")
    qos = AieQos(gops=1, fps=30)
    solver.allocate_resource(req(2, [1], 1, qos=qos, opc=50), "b")
    assert actions.levels[-1][1] == len(CLOCKS) - 1


def test_unreachable_qos_is_invalid():
    solver, _ = make_solver()
    qos = AieQos(gops=1000, fps=1000)
    with pytest.raises(InvalidRequestError):
        solver.allocate_resource(req(1, [0], 1, qos=qos, opc=1), "a")


def test_latency_drives_service_rate():
    solver, _ = make_solver()
    tight = AieQos(gops=1, latency=1)
    with pytest.raises(InvalidRequestError):
        solver.allocate_resource(req(1, [0], 1, qos=tight, opc=1), "a")


def test_failed_load_frees_resources():
    actions = RecordingActions(fail_load=True)
    solver, _ = make_solver(total_col=1, actions=actions)
    with pytest.raises(RuntimeError):
        solver.allocate_resource(req(1, [0], 1), "a")
    actions.fail_load = False
    result = solver.allocate_resource(req(1, [0], 1), "a")
    assert result.part == AiePart(start_col=0, ncols=1)


def test_failed_dpm_frees_resources():
    actions = RecordingActions(fail_dpm=True)
    solver, _ = make_solver(total_col=1, actions=actions)
    with pytest.raises(RuntimeError):
        solver.allocate_resource(req(1, [0], 1), "a")
    actions.fail_dpm = False
    result = solver.allocate_resource(req(1, [0], 1), "a")
    assert result.rid == 1


def test_clock_list_bounds():
    with pytest.raises(ValueError):
        ClockList(())
    with pytest.raises(ValueError):
        ClockList(tuple(range(1, 10)))
    assert ClockList((100, 200)).num_levels == 2


def test_default_actions_accept_calls():
    cfg = InitConfig(total_col=2, sys_eff_factor=1, clk_list=ClockList((1000,)))
    solver = Solver(cfg)
    result = solver.allocate_resource(req(5, [1], 1), None)
    assert result == LoadAction(rid=5, part=AiePart(start_col=1, ncols=1))
    solver.release_resource(5)
    with pytest.raises(NoResourceError):
        solver.release_resource(5)