# aiesolver

A resource solver that hands out column partitions of an AI Engine array
to hardware contexts and picks a power (DPM) level that meets each
request's quality-of-service needs. Everything lives in the module
`aiesolver.solver`.

## What it does

- Keeps track of which columns of the array are in use.
- For each allocation request, tries the candidate start columns in
  order and takes the first free range of the requested width.
- If no free range exists, shares an existing partition with the same
  start column and width, preferring the one with the fewest users.
- Picks the lowest clock level whose throughput covers the request's
  GOPS requirement (scaled by the system efficiency factor), but never
  lower than the level any live request already has. Requests without
  usable QoS figures (`gops` of zero, or neither `fps` nor `latency`
  set) get the top level.
- Calls the hooks of a `SolverActions` object to load a context, unload
  it, and set the default power level.

## Installation

```
pip install .
```

To run the tests, install the extra and run pytest:

```
pip install .[test]
pytest
```

## Usage

```python
from aiesolver.solver import (
    AieQos, AieQosCap, AllocRequest, CdoParts, ClockList,
    InitConfig, Solver, SolverActions,
)


class Actions(SolverActions):
    def load_hwctx(self, ctx, action):
        print("load", action.rid, action.part.start_col, action.part.ncols)

    def unload_hwctx(self, ctx):
        print("unload", ctx)

    def set_dft_dpm_level(self, ddev, level):
        print("dpm level", level)


config = InitConfig(
    total_col=4,
    sys_eff_factor=2,
    clk_list=ClockList([400, 800, 1000]),
    ddev="npu0",
    actions=Actions(),
)
solver = Solver(config)

request = AllocRequest(
    rid=1,
    cdo=CdoParts(start_cols=[0, 1, 2, 3], ncols=1, qos_cap=AieQosCap(opc=1024)),
    rqos=AieQos(gops=10, fps=30),
)
action = solver.allocate_resource(request, ctx="context-1")
print(action.part)          # AiePart(start_col=0, ncols=1)
solver.release_resource(1)
```

`Solver.allocate_resource` returns the `LoadAction` it passed to
`load_hwctx`: the request id (kept to 32 bits) and the `AiePart`
chosen. `Solver.release_resource` calls `unload_hwctx` with the context
given at allocation and frees that request's share of its partition;
the share is freed even if the hook raises.

### Configuration

- `ClockList` holds 1 to 8 clock frequencies in MHz, lowest power
  level first; any other length raises `ValueError`.
- `InitConfig` takes `total_col`, `sys_eff_factor`, `clk_list`, and
  optionally `latency_adj` (stored, not used in any decision), `ddev`
  (handed to `set_dft_dpm_level`) and `actions`.

### Default actions

Used as is, `SolverActions` only records what it is asked to do:
`loaded` lists `(ctx, LoadAction)` pairs, `unload_hwctx` drops the
pairs of a context, `dpm_levels` maps `id(ddev)` to the level last set,
and `last_dpm_level` holds the most recent level.

## Errors

Failures raise exceptions derived from `SolverError`:

- `InvalidRequestError` (also a `ValueError`): the request asks for
  more columns than the array has, or its QoS cannot be met even at
  the highest clock.
- `ResourceExistsError`: the request id is already allocated.
- `NoResourceError` (also a `LookupError`): no free or shareable
  partition is available, or a release names an unknown request id.

Any exception raised by a hook while loading or setting the power level
undoes the allocation and is passed on unchanged.

## What it does not do

The package is a library only: it has no command-line tool, talks to no
device by itself, and keeps its state in memory. The solver holds no
lock of its own; callers that share one solver between threads must
serialise access themselves.