import math

import matplotlib as mpl
from loguru import logger

from simscope import (
    Channel,
    EntityTable,
    Mode,
    ScopeController,
    ScopeSet,
    StandardSource,
    configure_logging,
    dump_scopes,
    load_scopes,
)
from simscope.oscplot.plot import MatplotlibCanvas

# --- User configuration dictionary ---
CONFIG = {
    "LOG_LEVEL": "INFO",  # logging level: DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL
    "TICK_PERIOD": 5e-6,  # simulation step (seconds)
    "N_TICKS": 40000,  # simulation steps to run
    "DRIVE_FREQ": 500.0,  # source frequency (Hz)
    "DRIVE_AMPLITUDE": 5.0,  # source amplitude (V)
    "RC_TIME_CONSTANT": 2e-4,  # RC low-pass time constant (s)
    "RESISTANCE": 1e3,  # series resistance (ohm)
    "DECIM_FACTOR": 8,  # ticks per display column
    "WIDTH": 400,
    "HEIGHT": 240,
    "STACKED": True,
    "SAVE_PNG": "scope_demo.png",  # set to None to skip the snapshot
    "SHOW_PLOTS": True,
}


def main() -> None:
    """
    Drive an RC low-pass with a sine, watch it on two scopes, then save and
    reload the scope setup in both record formats.
    """
    configure_logging(CONFIG.get("LOG_LEVEL", "INFO"))
    mpl.rcParams["figure.dpi"] = 100

    drive = StandardSource("source")
    resistor = StandardSource("resistor")
    capacitor = StandardSource("capacitor")
    entities = EntityTable([drive, resistor, capacitor])

    timeline = ScopeController(
        width=CONFIG["WIDTH"],
        height=CONFIG["HEIGHT"],
        decim_factor=CONFIG["DECIM_FACTOR"],
        tick_period=CONFIG["TICK_PERIOD"],
        name="Timeline",
    )
    for source in entities:
        timeline.attach(source, show_flags=3)
    timeline.set_stacked(CONFIG["STACKED"])
    timeline.display.show_frequency = True
    timeline.select(capacitor)

    loop = ScopeController(
        width=CONFIG["HEIGHT"],
        height=CONFIG["HEIGHT"],
        tick_period=CONFIG["TICK_PERIOD"],
        mode=Mode.SCATTER_XY,
        name="Drive vs capacitor",
    )
    loop.attach(drive)
    loop.attach(capacitor)
    loop.set_xy_axis("x", drive, Channel.VOLTAGE)
    loop.set_xy_axis("y", capacitor, Channel.VOLTAGE)

    scopes = ScopeSet([timeline, loop])
    scopes.select(timeline)

    dt = CONFIG["TICK_PERIOD"]
    tau = CONFIG["RC_TIME_CONSTANT"]
    v_cap = 0.0
    for n in range(CONFIG["N_TICKS"]):
        t = n * dt
        v_in = CONFIG["DRIVE_AMPLITUDE"] * math.sin(2 * math.pi * CONFIG["DRIVE_FREQ"] * t)
        v_cap += (v_in - v_cap) * dt / tau
        i = (v_in - v_cap) / CONFIG["RESISTANCE"]
        drive.update({Channel.VOLTAGE: v_in, Channel.CURRENT: i})
        resistor.update({Channel.VOLTAGE: v_in - v_cap, Channel.CURRENT: i})
        capacitor.update({Channel.VOLTAGE: v_cap, Channel.CURRENT: i})
        scopes.tick(t)

        # Fit once a full window of history exists
        if n == CONFIG["DECIM_FACTOR"] * CONFIG["WIDTH"]:
            for scope in scopes:
                scope.fit_ranges()

    for line in timeline.info_lines():
        logger.info(line)

    modern = dump_scopes(list(scopes), entities)
    legacy = dump_scopes(list(scopes), entities, legacy=True)
    for line in modern + legacy:
        logger.info(line)
    restored = load_scopes(legacy, entities, tick_period=dt)
    logger.success(f"Legacy records reloaded as {len(restored)} scopes: {restored}")

    canvas = MatplotlibCanvas(timeline)
    canvas.refresh()
    if CONFIG["SAVE_PNG"]:
        canvas.save_png(CONFIG["SAVE_PNG"])
    if CONFIG["SHOW_PLOTS"]:
        MatplotlibCanvas(loop).refresh()
        canvas.show()


if __name__ == "__main__":
    main()
