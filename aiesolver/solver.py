"""Column-based resource solver for AIE partitions.

The solver hands out column ranges of an AIE array to requesting contexts,
shares existing partitions when no free columns are left, and picks the
lowest DPM (power) level that still meets every active session's QoS.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

XRS_MAX_COL = 128
POWER_LEVEL_NUM = 8

_U32_MASK = 0xFFFFFFFF


def _u32(value: int) -> int:
    return value & _U32_MASK


class SolverError(Exception):
    """Base class for solver failures."""


class InvalidRequestError(SolverError, ValueError):
    """The request can never be satisfied on this array."""


class ResourceExistsError(SolverError):
    """A request with the same id is already allocated."""


class NoResourceError(SolverError, LookupError):
    """No partition is available, or the request id is unknown."""


@dataclass(frozen=True)
class AiePart:
    """A partition: a run of columns starting at ``start_col``."""

    start_col: int
    ncols: int


@dataclass(frozen=True)
class AieQosCap:
    """QoS capabilities of a partition."""

    opc: int = 0
    dma_bw: int = 0


@dataclass(frozen=True)
class AieQos:
    """QoS requirement of an allocation."""

    gops: int = 0
    fps: int = 0
    dma_bw: int = 0
    latency: int = 0
    exec_time: int = 0
    priority: int = 0


@dataclass(frozen=True)
class CdoParts:
    """A relocatable configuration object: where it may start and how wide it is."""

    start_cols: tuple[int, ...]
    ncols: int
    qos_cap: AieQosCap = field(default_factory=AieQosCap)

    def __post_init__(self) -> None:
        object.__setattr__(self, "start_cols", tuple(self.start_cols))


@dataclass(frozen=True)
class AllocRequest:
    """A request to allocate columns for one context."""

    rid: int
    cdo: CdoParts
    rqos: AieQos = field(default_factory=AieQos)


@dataclass(frozen=True)
class LoadAction:
    """Argument passed to the load callback."""

    rid: int
    part: AiePart


@dataclass(frozen=True)
class ClockList:
    """Available AIE clock frequencies in MHz, lowest power level first."""

    cu_clk_list: tuple[int, ...]

    def __post_init__(self) -> None:
        levels = tuple(self.cu_clk_list)
        if not 1 <= len(levels) <= POWER_LEVEL_NUM:
            raise ValueError(
                f"clock list must hold 1 to {POWER_LEVEL_NUM} levels, got {len(levels)}"
            )
        object.__setattr__(self, "cu_clk_list", levels)

    @property
    def num_levels(self) -> int:
        return len(self.cu_clk_list)


class SolverActions:
    """Callbacks the solver invokes; subclass to act on a real device.

    The default implementation keeps a record of what it was asked to do:
    the loaded contexts with their load actions, and the DPM level last set
    for each device. A hook signals failure by raising.
    """

    def __init__(self) -> None:
        self.loaded: list[tuple[Any, LoadAction]] = []
        self.dpm_levels: dict[int, int] = {}
        self.last_dpm_level: int | None = None

    def load_hwctx(self, ctx: Any, action: LoadAction) -> None:
        """Record ``ctx`` as loaded onto the partition in ``action``."""
        self.loaded.append((ctx, action))

    def unload_hwctx(self, ctx: Any) -> None:
        """Forget every load recorded for ``ctx``."""
        self.loaded = [(c, a) for c, a in self.loaded if c is not ctx]

    def set_dft_dpm_level(self, ddev: Any, level: int) -> None:
        """Record ``level`` as the default DPM level of ``ddev``."""
        self.dpm_levels[id(ddev)] = level
        self.last_dpm_level = level


@dataclass(frozen=True)
class InitConfig:
    """System metrics the solver works with."""

    total_col: int
    sys_eff_factor: int
    clk_list: ClockList
    latency_adj: int = 0
    ddev: Any = None
    actions: SolverActions = field(default_factory=SolverActions)


@dataclass(eq=False)
class _PartitionNode:
    start_col: int
    ncols: int
    nshared: int = 1
    exclusive: bool = False


@dataclass(eq=False)
class _SolverNode:
    rid: int
    start_cols: tuple[int, ...]
    pt_node: _PartitionNode | None = None
    ctx: Any = None
    dpm_level: int = 0


def _calculate_gops(rqos: AieQos) -> int:
    service_rate = 1000 // rqos.latency if rqos.latency else 0
    if rqos.fps > service_rate:
        return _u32(rqos.fps * rqos.gops)
    return _u32(service_rate * rqos.gops)


def _is_valid_qos_dpm_params(rqos: AieQos) -> bool:
    return rqos.gops > 0 and (rqos.fps > 0 or rqos.latency > 0)


class Solver:
    """Allocates AIE columns to contexts. Not thread safe; callers lock."""

    def __init__(self, config: InitConfig) -> None:
        self._cfg = dataclasses.replace(config)
        self._nodes: list[_SolverNode] = []
        self._partitions: list[_PartitionNode] = []
        self._used_cols: set[int] = set()

    # -- QoS -----------------------------------------------------------

    def _qos_met(self, rqos: AieQos, cgops: int) -> bool:
        request_gops = _u32(_calculate_gops(rqos) * self._cfg.sys_eff_factor)
        return request_gops <= cgops

    def _capacity_gops(self, cdo: CdoParts, freq: int) -> int:
        return _u32(cdo.qos_cap.opc * freq) // 1000

    def _sanity_check(self, request: AllocRequest) -> None:
        if request.cdo.ncols > self._cfg.total_col:
            raise InvalidRequestError(
                f"request needs {request.cdo.ncols} columns, array has {self._cfg.total_col}"
            )
        max_freq = self._cfg.clk_list.cu_clk_list[-1]
        if not self._qos_met(request.rqos, self._capacity_gops(request.cdo, max_freq)):
            raise InvalidRequestError("QoS requirement cannot be met at any DPM level")

    def _set_dpm_level(self, request: AllocRequest) -> int:
        clocks = self._cfg.clk_list.cu_clk_list
        max_level = len(clocks) - 1
        if not _is_valid_qos_dpm_params(request.rqos):
            level = max_level
        else:
            level = next(
                (
                    lvl
                    for lvl in range(max_level)
                    if self._qos_met(
                        request.rqos, self._capacity_gops(request.cdo, clocks[lvl])
                    )
                ),
                max_level,
            )
            level = max([level, *(node.dpm_level for node in self._nodes)])
        self._cfg.actions.set_dft_dpm_level(self._cfg.ddev, level)
        return level

    # -- partitions ----------------------------------------------------

    def _columns_free(self, col: int, ncols: int) -> bool:
        next_used = min((c for c in self._used_cols if c >= col), default=XRS_MAX_COL)
        return next_used >= col + ncols

    def _get_free_partition(self, snode: _SolverNode, ncols: int) -> bool:
        col = next((c for c in snode.start_cols if self._columns_free(c, ncols)), None)
        if col is None:
            return False
        pt_node = _PartitionNode(start_col=col, ncols=ncols)
        self._partitions.append(pt_node)
        self._used_cols.update(range(col, col + ncols))
        snode.pt_node = pt_node
        return True

    def _allocate_partition(self, snode: _SolverNode, ncols: int) -> None:
        if self._get_free_partition(snode, ncols):
            return
        chosen: _PartitionNode | None = None
        for pt_node in self._partitions:
            if pt_node.exclusive:
                continue
            if chosen is not None and pt_node.nshared >= chosen.nshared:
                continue
            if pt_node.start_col in snode.start_cols and pt_node.ncols == ncols:
                chosen = pt_node
        if chosen is None:
            raise NoResourceError("no free or shareable partition")
        chosen.nshared += 1
        snode.pt_node = chosen

    def _remove_partition_node(self, pt_node: _PartitionNode) -> None:
        pt_node.nshared -= 1
        if pt_node.nshared > 0:
            return
        self._partitions.remove(pt_node)
        self._used_cols.difference_update(
            range(pt_node.start_col, pt_node.start_col + pt_node.ncols)
        )

    def _remove_solver_node(self, node: _SolverNode) -> None:
        self._nodes.remove(node)
        if node.pt_node is not None:
            self._remove_partition_node(node.pt_node)

    def _find_node(self, rid: int) -> _SolverNode | None:
        return next((node for node in self._nodes if node.rid == rid), None)

    # -- public API ----------------------------------------------------

    def allocate_resource(self, request: AllocRequest, ctx: Any) -> LoadAction:
        """Allocate a partition for ``ctx`` and return the load action issued."""
        try:
            self._sanity_check(request)
        except InvalidRequestError:
            logger.error("invalid request")
            raise

        if self._find_node(request.rid) is not None:
            logger.error("rid %d is in-use", request.rid)
            raise ResourceExistsError(f"rid {request.rid} is in use")

        snode = _SolverNode(rid=request.rid, start_cols=request.cdo.start_cols)
        self._allocate_partition(snode, request.cdo.ncols)
        self._nodes.append(snode)

        pt = snode.pt_node
        assert pt is not None
        action = LoadAction(
            rid=_u32(snode.rid), part=AiePart(start_col=pt.start_col, ncols=pt.ncols)
        )
        try:
            self._cfg.actions.load_hwctx(ctx, action)
            snode.dpm_level = self._set_dpm_level(request)
        except BaseException:
            self._remove_solver_node(snode)
            raise
        snode.ctx = ctx

        logger.debug("start col %d ncols %d", pt.start_col, pt.ncols)
        return action

    def release_resource(self, rid: int) -> None:
        """Unload the context of ``rid`` and free its share of the partition."""
        node = self._find_node(rid)
        if node is None:
            logger.error("node not exist")
            raise NoResourceError(f"rid {rid} is not allocated")
        try:
            self._cfg.actions.unload_hwctx(node.ctx)
        finally:
            self._remove_solver_node(node)