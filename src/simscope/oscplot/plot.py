from typing import List, Optional, Protocol

import matplotlib.pyplot as plt
import numpy as np
from loguru import logger
from PIL import Image

from simscope.oscplot.raster import argb_to_rgb_array
from simscope.oscplot.scope import Mode, ScopeController


class Canvas(Protocol):
    """Display sink that a scope's rendered frames are blitted to."""

    def blit(self, frame: np.ndarray) -> None: ...

    def draw_text(self, lines: List[str]) -> None: ...


class MatplotlibCanvas:
    """
    Shows scope frames in a matplotlib figure.

    The frame is drawn with ``imshow`` and updated in place. Labelled time
    gridlines become x tick labels and readout lines are figure text.
    """

    # Default styling constants
    DEFAULT_FIGSIZE = (8, 5)
    DEFAULT_TEXT_COLOR = "black"
    DEFAULT_FONT_SIZE = 9

    def __init__(
        self,
        scope: ScopeController,
        figsize=DEFAULT_FIGSIZE,
        text_color: str = DEFAULT_TEXT_COLOR,
        font_size: int = DEFAULT_FONT_SIZE,
    ):
        """
        Initialise the canvas for ``scope``.

        Parameters
        ----------
        scope : ScopeController
            Scope whose frames are displayed.
        figsize : tuple, default=(8, 5)
            Figure size in inches.
        text_color : str, default="black"
            Colour of the readout text.
        font_size : int, default=9
            Font size of the readout and gridline labels.
        """
        self.scope = scope
        self.figsize = figsize
        self.text_color = text_color
        self.font_size = font_size

        self.fig = None
        self.ax = None
        self._image = None
        self._text_artists = []
        self._last_frame: Optional[np.ndarray] = None

    def _ensure_figure(self) -> None:
        if self.fig is not None:
            return
        self.fig, self.ax = plt.subplots(figsize=self.figsize)
        self.ax.set_yticks([])
        self.ax.set_title(self.scope.name)

    def blit(self, frame: np.ndarray) -> None:
        """Replace the displayed image by ``frame`` (uint32 ARGB)."""
        self._ensure_figure()
        rgb = argb_to_rgb_array(frame)
        if self._image is None or self._image.get_array().shape != rgb.shape:
            self.ax.clear()
            self.ax.set_yticks([])
            self.ax.set_title(self.scope.name)
            self._image = self.ax.imshow(rgb, interpolation="nearest", aspect="auto")
        else:
            self._image.set_data(rgb)
        self._last_frame = frame

    def draw_text(self, lines: List[str]) -> None:
        """Replace the readout text shown below the frame."""
        self._ensure_figure()
        for artist in self._text_artists:
            artist.remove()
        self._text_artists = [
            self.fig.text(
                0.02,
                0.06 - 0.04 * i,
                line,
                color=self.text_color,
                fontsize=self.font_size,
            )
            for i, line in enumerate(lines)
        ]

    def refresh(self) -> None:
        """Render the scope and update the figure."""
        self.blit(self.scope.render())
        lines = self.scope.info_lines()
        if (
            self.scope.mode is Mode.TIME_SERIES
            and self.scope.display.show_labels
            and self.scope.buffers
        ):
            labelled = [(col, t) for col, t, lab in self.scope.gridlines() if lab]
            self.ax.set_xticks([col for col, _ in labelled])
            self.ax.set_xticklabels(
                [f"{t:.3g}" for _, t in labelled],
                fontsize=self.font_size,
            )
        else:
            self.ax.set_xticks([])
        self.draw_text(lines)
        self.fig.canvas.draw_idle()
        logger.debug(f"Refreshed canvas for {self.scope!r}")

    def save_png(self, filepath: str) -> None:
        """
        Save the last blitted frame as a PNG at native resolution.

        Parameters
        ----------
        filepath : str
            Destination path.
        """
        if self._last_frame is None:
            raise RuntimeError("Nothing has been drawn yet.")
        Image.fromarray(argb_to_rgb_array(self._last_frame)).save(
            filepath, format="PNG"
        )
        logger.info(f"Frame saved to {filepath}")

    def save(self, filepath: str) -> None:
        """Save the whole figure, readout included."""
        if self.fig is None:
            raise RuntimeError("Canvas has not been drawn yet.")
        self.fig.savefig(filepath)
        logger.info(f"Plot saved to {filepath}")

    def show(self) -> None:
        """Display the figure."""
        if self.fig is None:
            self.refresh()
        plt.show()

    def close(self) -> None:
        if self.fig is not None:
            plt.close(self.fig)
        self.fig = self.ax = self._image = None
        self._text_artists = []
