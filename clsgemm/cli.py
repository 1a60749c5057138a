import json as _json
import sys
import time

import click
import numpy as np
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import config as _cfg
from .device import is_opencl_available, list_devices, select_device
from .engine import SgemmEngine
from .errors import EngineError
from .utils.logging import set_level as _set_log_level
from .validation import validate_engine

console = Console()


def _fail(exc: EngineError) -> None:
    """Report an engine failure and terminate with status 1."""
    console.print(f"[red]{exc.kind} error:[/red]", end=" ")
    console.print(exc.diagnostic, markup=False, highlight=False)
    sys.exit(1)


@click.group()
@click.option("--log-level", type=str, default=None, help="Equivalent to CLSGEMM_LOG_LEVEL.")
def main(log_level: str | None):
    """clsgemm: OpenCL SGEMM host engine."""
    if log_level:
        _cfg.set("CLSGEMM_LOG_LEVEL", log_level.upper())
        _set_log_level(log_level)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def info(as_json: bool):
    """List OpenCL platforms/devices and the one the engine would pick."""
    try:
        devices = list_devices()
    except EngineError as exc:
        _fail(exc)
    device_type = _cfg.get("CLSGEMM_DEVICE_TYPE")
    selected = None
    if is_opencl_available(device_type):
        plat, dev = select_device(device_type)
        selected = {"platform": plat.name, "device": dev.name, "device_type": device_type}
    if as_json:
        click.echo(_json.dumps({"devices": devices, "selected": selected}, indent=2))
        return
    console.print("[bold cyan]OpenCL devices[/bold cyan]")
    if not devices:
        console.print("(no OpenCL devices found)")
    for d in devices:
        line = (
            f"  Platform {d['platform_index']}: {d['platform']} | "
            f"Device {d['device_index']}: {d['device']} [{d['kind']}] "
            f"max_wg={d['max_work_group_size']}"
        )
        console.print(escape(line))
    if selected:
        console.print(f"[green]Selected:[/green] {escape(selected['device'])} on {escape(selected['platform'])}")
    else:
        console.print(f"[yellow]No {device_type} device on the first platform.[/yellow]")


@main.group()
def config():
    """Inspect clsgemm environment configuration."""
    pass


@config.command("list")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def config_list(as_json: bool):
    rows = _cfg.describe()
    if as_json:
        click.echo(_json.dumps(rows, indent=2, default=str))
        return
    table = Table(title="clsgemm configuration")
    for col in ("name", "category", "current", "default", "description"):
        table.add_column(col)
    for r in rows:
        table.add_row(r["name"], r["category"], str(r["current"]), str(r["default"]), r["description"])
    console.print(table)


@main.command()
@click.argument("m", type=int)
@click.argument("n", type=int)
@click.argument("k", type=int)
@click.option("--iters", type=int, default=3, show_default=True)
@click.option("--warmup", type=int, default=1, show_default=True)
@click.option("--validate", is_flag=True, help="Compare the result against NumPy.")
@click.option("--kernel", "kernel_path", type=str, default=None, help="OpenCL C source (default: packaged sgemm.cl).")
@click.option(
    "--device-type",
    type=click.Choice(["gpu", "cpu", "accelerator", "all"]),
    default=None,
    help="Device class taken from the first platform.",
)
@click.option("--tile-width", type=int, default=None)
@click.option("--vector-width", type=int, default=None)
@click.option("--seed", type=int, default=0, show_default=True)
def bench(
    m: int,
    n: int,
    k: int,
    iters: int,
    warmup: int,
    validate: bool,
    kernel_path: str | None,
    device_type: str | None,
    tile_width: int | None,
    vector_width: int | None,
    seed: int,
):
    """Time C = A @ B for an M x K by K x N problem."""
    try:
        engine = SgemmEngine(
            m,
            n,
            k,
            tile_width=tile_width,
            vector_width=vector_width,
            kernel_path=kernel_path,
            device_type=device_type,
        )
    except EngineError as exc:
        _fail(exc)

    with engine:
        rng = np.random.default_rng(seed)
        A = rng.standard_normal((m, k), dtype=np.float32)
        B = rng.standard_normal((k, n), dtype=np.float32)
        C = np.empty((m, n), dtype=np.float32)
        try:
            for _ in range(max(0, warmup)):
                engine.multiply(A, B, C)
            elapsed = 0.0
            kernel_ms = []
            for _ in range(max(1, iters)):
                t0 = time.perf_counter()
                result = engine.execute(A, B, C)
                elapsed += time.perf_counter() - t0
                if result.ms is not None:
                    kernel_ms.append(result.ms)
            report = validate_engine(engine, seed=seed) if validate else None
        except EngineError as exc:
            _fail(exc)

    runs = max(1, iters)
    avg = elapsed / runs
    dims = engine.dims
    console.print(f"Problem size: M={m} N={n} K={k} (padded {dims.m_padded}x{dims.n_padded}x{dims.k_padded})")
    console.print(f"Number of iterations: {runs}")
    console.print(f"Elapsed time: {avg:.6f} sec")
    console.print(f"Throughput: {dims.flops / avg / 1e9:.3f} GFLOPS")
    if kernel_ms:
        console.print(f"Kernel time: {sum(kernel_ms) / len(kernel_ms):.3f} ms")
    if report is not None:
        if report.ok:
            console.print(f"[green]Validation: VALID[/green] (rel err {report.rel_err:.2e})")
        else:
            console.print(f"[red]Validation: INVALID[/red] (rel err {report.rel_err:.2e} > {report.rtol:.0e})")
            sys.exit(1)


if __name__ == "__main__":
    main()
