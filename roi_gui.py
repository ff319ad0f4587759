#!/usr/bin/env python3
"""
image-roi GUI: open an image, apply OpenCV transforms and mark regions of
interest with click/drag, zoom and pan.
"""

import argparse
import logging
import sys
import tkinter as tk
import traceback
from pathlib import Path
from tkinter import colorchooser, filedialog, messagebox
from typing import Optional

import cv2
from PIL import Image, ImageTk

from image_ops import TRANSFORMS, save_image, to_pil_image
from roi_logging import log_file_name, log_fatal_error, log_opencv_diagnostics, setup_error_logging
from roi_state import AppConfig, PlacementMode, RoiSession, SampleMode
from version import __version__


SHIFT_MASK = 0x0001

# Errors a user action can reasonably trigger; anything else is a bug
ACTION_ERRORS = (OSError, ValueError, cv2.error)


# ============================================================================
# Image Canvas
# ============================================================================

class ImageCanvas(tk.Canvas):
    """
    Displays the current image with ROI overlays.
    Left button places/draws ROIs, wheel zooms, middle button pans.
    """
    def __init__(self, parent, session: RoiSession, app):
        super().__init__(parent, bg="gray", highlightthickness=0)
        self.session = session
        self.app = app
        self.photo_image = None  # Keep reference to prevent GC
        self._render_key = None
        self._pan_last = None

        self.bind("<Configure>", lambda e: self.refresh())
        self.bind("<Button-1>", self.on_mouse_down)
        self.bind("<B1-Motion>", self.on_mouse_drag)
        self.bind("<ButtonRelease-1>", self.on_mouse_up)
        self.bind("<MouseWheel>", self.on_wheel)
        self.bind("<Button-4>", lambda e: self.zoom_with(-1))  # X11 wheel up
        self.bind("<Button-5>", lambda e: self.zoom_with(1))   # X11 wheel down
        self.bind("<ButtonPress-2>", self.on_pan_start)
        self.bind("<B2-Motion>", self.on_pan_drag)
        self.bind("<ButtonRelease-2>", self.on_pan_end)

    def event_to_image(self, event):
        """Image coordinates of a mouse event, None when left/above the image"""
        fx, fy = self.session.view.canvas_to_image_float(event.x, event.y)
        if fx < 0 or fy < 0:
            return None
        return self.session.view.canvas_to_image(event.x, event.y)

    def scaled_photo(self):
        """PhotoImage of the displayed image at the current zoom (cached)"""
        image = self.session.display_image
        scale = self.session.view.scale
        key = (id(image), scale)
        if key == self._render_key:
            return self.photo_image

        img_w, img_h = self.session.image_size
        scaled_w = max(1, int(img_w * scale))
        scaled_h = max(1, int(img_h * scale))
        # Nearest keeps individual pixels visible when zoomed in
        resample = Image.Resampling.NEAREST if scale > 1.0 else Image.Resampling.LANCZOS
        pil_image = to_pil_image(image).resize((scaled_w, scaled_h), resample)

        self.photo_image = ImageTk.PhotoImage(pil_image)
        self._render_key = key
        return self.photo_image

    def refresh(self):
        """Redraw entire canvas (image + ROIs + drag preview)"""
        self.delete("all")
        if not self.session.has_image:
            self.show_welcome()
            return

        view = self.session.view
        self.create_image(view.offset[0], view.offset[1], anchor=tk.NW, image=self.scaled_photo())

        config = self.session.config
        for roi in self.session.rois:
            self.create_rectangle(*roi.to_canvas(view), outline=config.roi_color, width=2,
                                  tags=f"roi_{roi.region_id}")

        rect = self.session.drag_rect()
        if rect:
            x, y, w, h = rect
            x1, y1 = view.image_to_canvas(x, y)
            x2, y2 = view.image_to_canvas(x + w, y + h)
            self.create_rectangle(round(x1), round(y1), round(x2), round(y2),
                                  outline=config.preview_color, width=2, dash=(5, 5),
                                  tags="drag_preview")

    def show_welcome(self):
        w = max(self.winfo_width(), 400)
        h = max(self.winfo_height(), 300)
        self.create_text(
            w / 2, h / 2,
            text="image-roi\n\nUse Open Image... to pick a png, jpg or webp file",
            font=("Arial", 16), fill="white", justify=tk.CENTER
        )

    def on_mouse_down(self, event):
        point = self.event_to_image(event)
        if point is None or not self.session.contains_image_point(*point):
            return
        x, y = point
        shift = bool(event.state & SHIFT_MASK)

        if self.session.placement_mode == PlacementMode.SUBSAMPLE:
            if shift:
                removed = self.session.remove_roi_at(x, y)
                self.app.set_status(f"ROI removed at ({x}, {y})" if removed else "No ROI here")
            else:
                roi = self.session.place_subsample(x, y)
                if roi:
                    self.app.report_samples(roi, point)
            self.refresh()
            self.app.update_controls()
        else:
            self.session.begin_drag(x, y)

    def on_mouse_drag(self, event):
        if not self.session.is_dragging:
            return
        self.session.update_drag(*self.session.view.canvas_to_image(event.x, event.y))
        self.refresh()

    def on_mouse_up(self, event):
        if not self.session.is_dragging:
            return
        self.session.update_drag(*self.session.view.canvas_to_image(event.x, event.y))
        roi = self.session.end_drag(shift=bool(event.state & SHIFT_MASK))
        if roi:
            self.app.report_samples(roi)
        self.refresh()
        self.app.update_controls()

    def on_wheel(self, event):
        # Tk reports wheel-up as a positive delta
        self.zoom_with(-event.delta)

    def zoom_with(self, delta):
        if not self.session.has_image:
            return
        self.session.view.zoom_wheel(delta)
        self.refresh()
        self.app.update_controls()

    def on_pan_start(self, event):
        self._pan_last = (event.x, event.y)
        self.config(cursor="fleur")

    def on_pan_drag(self, event):
        if self._pan_last is None:
            return
        dx, dy = event.x - self._pan_last[0], event.y - self._pan_last[1]
        self._pan_last = (event.x, event.y)
        self.session.view.pan(dx, dy)
        self.refresh()

    def on_pan_end(self, event):
        self._pan_last = None
        self.config(cursor="")


# ============================================================================
# Preferences Dialog
# ============================================================================

class PreferencesDialog(tk.Toplevel):
    """Overlay colour preferences"""
    def __init__(self, parent, config: AppConfig):
        super().__init__(parent)
        self.title("Preferences")
        self.app_config = config
        self.result = False
        self.colors = {
            "roi": config.roi_color,
            "preview": config.preview_color,
        }
        self.previews = {}

        self.transient(parent)
        self.grab_set()

        frame = tk.Frame(self, padx=20, pady=20)
        frame.pack(fill=tk.BOTH, expand=True)

        for row, (key, label) in enumerate((("roi", "ROI Color:"), ("preview", "Drag Preview Color:"))):
            tk.Label(frame, text=label, font=("Arial", 10, "bold")).grid(
                row=row, column=0, sticky=tk.W, pady=5)
            preview = tk.Canvas(frame, width=40, height=24, bg=self.colors[key],
                                highlightthickness=1, highlightbackground="black")
            preview.grid(row=row, column=1, padx=10)
            self.previews[key] = preview
            tk.Button(frame, text="Choose Color...",
                      command=lambda k=key: self.choose_color(k)).grid(row=row, column=2)

        buttons = tk.Frame(frame)
        buttons.grid(row=2, column=0, columnspan=3, pady=(15, 0))
        tk.Button(buttons, text="OK", width=10, command=self.on_ok).pack(side=tk.LEFT, padx=5)
        tk.Button(buttons, text="Cancel", width=10, command=self.destroy).pack(side=tk.LEFT, padx=5)

        self.resizable(False, False)

    def choose_color(self, key):
        color = colorchooser.askcolor(color=self.colors[key], title="Choose Color", parent=self)
        if color[1]:  # color[1] is the hex string
            self.colors[key] = color[1]
            self.previews[key].config(bg=color[1])

    def on_ok(self):
        self.app_config.roi_color = self.colors["roi"]
        self.app_config.preview_color = self.colors["preview"]
        self.result = True
        self.destroy()


# ============================================================================
# Main Application
# ============================================================================

class RoiApp(tk.Tk):
    """Main window: toolbar, ROI canvas, navigation and status bar"""
    def __init__(self, initial_image_path: Optional[Path] = None):
        super().__init__()
        self.title("image-roi")
        self.geometry("1100x800")

        self.session = RoiSession()

        self.setup_menu()
        self.setup_toolbar()
        self.setup_roi_controls()

        # Bottom widgets are packed before the canvas so it cannot squeeze them out
        self.status_bar = tk.Label(self, text="Ready", bd=1, relief=tk.SUNKEN,
                                   anchor=tk.W, padx=5)
        self.status_bar.pack(side=tk.BOTTOM, fill=tk.X)
        self.setup_navigation()

        self.canvas = ImageCanvas(self, self.session, self)
        self.canvas.pack(fill=tk.BOTH, expand=True)

        self.update_controls()
        if initial_image_path:
            # Load after the window is mapped so the canvas has a size
            self.after(100, lambda: self.load_image(initial_image_path))

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def setup_menu(self):
        menubar = tk.Menu(self)
        self.config(menu=menubar)

        file_menu = tk.Menu(menubar, tearoff=0)
        menubar.add_cascade(label="File", menu=file_menu)
        file_menu.add_command(label="Open Image...", command=self.open_image)
        file_menu.add_command(label="Save Result...", command=self.save_result)
        file_menu.add_separator()
        file_menu.add_command(label="Exit", command=self.destroy)

        edit_menu = tk.Menu(menubar, tearoff=0)
        menubar.add_cascade(label="Edit", menu=edit_menu)
        edit_menu.add_command(label="Copy as Data URL", command=self.copy_data_url)
        edit_menu.add_command(label="Clear ROIs", command=self.clear_rois)
        edit_menu.add_separator()
        edit_menu.add_command(label="Preferences...", command=self.show_preferences)

        help_menu = tk.Menu(menubar, tearoff=0)
        menubar.add_cascade(label="Help", menu=help_menu)
        help_menu.add_command(label="Mouse and Keyboard", command=self.show_shortcuts)
        help_menu.add_command(label="About", command=self.show_about)

        self.bind("<plus>", lambda e: self.on_key(e, self.zoom_in))
        self.bind("<equal>", lambda e: self.on_key(e, self.zoom_in))
        self.bind("<minus>", lambda e: self.on_key(e, self.zoom_out))
        self.bind("<Key-0>", lambda e: self.on_key(e, self.reset_view))
        self.bind("<Delete>", lambda e: self.on_key(e, self.clear_rois))
        self.bind("<Left>", lambda e: self.on_key(e, self.show_previous))
        self.bind("<Right>", lambda e: self.on_key(e, self.show_next))

    def setup_toolbar(self):
        self.toolbar = tk.Frame(self, relief=tk.RAISED, borderwidth=2)
        self.toolbar.pack(side=tk.TOP, fill=tk.X)

        tk.Button(self.toolbar, text="Open Image...", command=self.open_image).pack(
            side=tk.LEFT, padx=2, pady=2)
        self.add_separator(self.toolbar)

        self.transform_buttons = []
        for name, transform in TRANSFORMS.items():
            button = tk.Button(self.toolbar, text=transform.label,
                               command=lambda n=name: self.apply_transform(n))
            button.pack(side=tk.LEFT, padx=2, pady=2)
            self.transform_buttons.append(button)
        self.add_separator(self.toolbar)

        self.save_btn = tk.Button(self.toolbar, text="Save Result...", command=self.save_result)
        self.save_btn.pack(side=tk.LEFT, padx=2, pady=2)

    def setup_roi_controls(self):
        bar = tk.Frame(self, relief=tk.RAISED, borderwidth=2)
        bar.pack(side=tk.TOP, fill=tk.X)

        self.mode_btn = tk.Button(bar, command=self.toggle_mode, width=16)
        self.mode_btn.pack(side=tk.LEFT, padx=2, pady=2)

        self.sample_var = tk.StringVar(value=self.session.sample_mode.value)
        for mode, label in ((SampleMode.RGB, "RGB"), (SampleMode.GRAY, "Gray")):
            tk.Radiobutton(bar, text=label, variable=self.sample_var, value=mode.value,
                           command=self.on_sample_mode_changed).pack(side=tk.LEFT)
        self.add_separator(bar)

        config = self.session.config
        self.roi_width_var = tk.IntVar(value=self.session.roi_width)
        self.roi_height_var = tk.IntVar(value=self.session.roi_height)
        for label, var in (("ROI Width:", self.roi_width_var), ("ROI Height:", self.roi_height_var)):
            tk.Label(bar, text=label).pack(side=tk.LEFT, padx=(5, 2))
            spin = tk.Spinbox(bar, from_=config.min_roi_size, to=config.max_roi_size,
                              width=5, textvariable=var, command=self.on_roi_size_changed)
            spin.pack(side=tk.LEFT)
            spin.bind("<Return>", lambda e: self.on_roi_size_changed())
            spin.bind("<FocusOut>", lambda e: self.on_roi_size_changed())
        self.add_separator(bar)

        tk.Button(bar, text="+", width=2, command=self.zoom_in).pack(side=tk.LEFT, padx=2)
        tk.Button(bar, text="-", width=2, command=self.zoom_out).pack(side=tk.LEFT, padx=2)
        tk.Button(bar, text="Clear ROIs", command=self.clear_rois).pack(side=tk.LEFT, padx=5)

    def setup_navigation(self):
        nav = tk.Frame(self)
        nav.pack(side=tk.BOTTOM, fill=tk.X, pady=4)
        inner = tk.Frame(nav)
        inner.pack()
        self.prev_btn = tk.Button(inner, text="⏮ Prev", command=self.show_previous)
        self.prev_btn.pack(side=tk.LEFT, padx=4)
        self.next_btn = tk.Button(inner, text="Next ⏭", command=self.show_next)
        self.next_btn.pack(side=tk.LEFT, padx=4)

    def add_separator(self, parent):
        tk.Frame(parent, width=2, bg="gray", relief=tk.SUNKEN).pack(
            side=tk.LEFT, fill=tk.Y, padx=5, pady=2
        )

    # ------------------------------------------------------------------
    # State sync
    # ------------------------------------------------------------------

    def update_controls(self):
        """Enable/disable buttons and refresh the status bar"""
        has_image = self.session.has_image
        state = tk.NORMAL if has_image else tk.DISABLED
        for button in self.transform_buttons:
            button.config(state=state)
        self.save_btn.config(state=state)

        self.prev_btn.config(state=tk.NORMAL if self.session.has_previous() else tk.DISABLED)
        self.next_btn.config(state=tk.NORMAL if self.session.has_next() else tk.DISABLED)

        subsample = self.session.placement_mode == PlacementMode.SUBSAMPLE
        self.mode_btn.config(text="Mode: Subsample" if subsample else "Mode: Draw")

        if has_image:
            w, h = self.session.image_size
            self.title(f"image-roi - {self.session.image_path.name}")
            self.status_bar.config(
                text=f"{self.session.image_path.name}  {w}x{h}  "
                     f"zoom {self.session.view.scale * 100:.0f}%  "
                     f"ROIs: {len(self.session.rois)}"
            )

    def set_status(self, text):
        self.status_bar.config(text=text)

    def report_samples(self, roi, point=None):
        """Print the pixel values under a new ROI to the console"""
        logger = logging.getLogger(__name__)
        logger.info(f"Sampling ROI {roi.as_rect()} ({self.session.placement_mode.value})")
        print(self.session.describe_samples(roi, point))

    def on_key(self, event, action):
        # Typing into the ROI size fields must not trigger shortcuts
        if isinstance(event.widget, (tk.Entry, tk.Spinbox)):
            return None
        action()
        return "break"

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def open_image(self):
        file_path = filedialog.askopenfilename(
            title="Select image",
            filetypes=[
                ("Image files", "*.png *.jpg *.jpeg *.webp"),
                ("All files", "*.*")
            ]
        )
        if file_path:
            self.load_image(Path(file_path))

    def load_image(self, path: Path):
        logger = logging.getLogger(__name__)
        try:
            logger.info(f"Loading image: {path}")
            self.session.open_image(path)
        except ACTION_ERRORS as e:
            logger.error(f"Error loading image {path}: {e}")
            logger.error(traceback.format_exc())
            messagebox.showerror("Error Loading Image", str(e))
            return
        self.canvas.refresh()
        self.update_controls()

    def run_navigation(self, step):
        logger = logging.getLogger(__name__)
        try:
            step()
        except ACTION_ERRORS as e:
            logger.error(f"Error loading image: {e}")
            logger.error(traceback.format_exc())
            messagebox.showerror("Error Loading Image", str(e))
        self.canvas.refresh()
        self.update_controls()

    def show_previous(self):
        self.run_navigation(self.session.previous_image)

    def show_next(self):
        self.run_navigation(self.session.next_image)

    def apply_transform(self, name):
        logger = logging.getLogger(__name__)
        try:
            self.session.apply_transform(name)
        except ACTION_ERRORS as e:
            logger.error(f"Transform {name} failed: {e}")
            logger.error(traceback.format_exc())
            messagebox.showerror("Transform Failed", f"{TRANSFORMS[name].label}: {e}")
            return
        self.canvas.refresh()
        self.update_controls()
        self.set_status(f"Applied {TRANSFORMS[name].label}")

    def save_result(self):
        if not self.session.has_image:
            return
        stem = self.session.image_path.stem
        suffix = self.session.last_transform or "copy"
        output_file = filedialog.asksaveasfilename(
            title="Save Result As",
            initialfile=f"{stem}_{suffix}.png",
            defaultextension=".png",
            filetypes=[
                ("PNG", "*.png"),
                ("JPEG", "*.jpg *.jpeg"),
                ("WebP", "*.webp"),
                ("All files", "*.*")
            ]
        )
        if not output_file:
            return  # User cancelled

        try:
            saved = save_image(self.session.display_image, output_file)
        except ACTION_ERRORS as e:
            logger = logging.getLogger(__name__)
            logger.error(f"Save failed: {e}")
            logger.error(traceback.format_exc())
            messagebox.showerror("Save Error", f"Failed to save image: {e}")
            return
        self.set_status(f"Saved {saved.name}")

    def copy_data_url(self):
        if not self.session.data_url:
            return
        self.clipboard_clear()
        self.clipboard_append(self.session.data_url)
        self.set_status(f"Copied {self.session.mime} data URL ({len(self.session.data_url)} chars)")

    def toggle_mode(self):
        self.session.cancel_drag()
        if self.session.placement_mode == PlacementMode.SUBSAMPLE:
            self.session.placement_mode = PlacementMode.DRAW
        else:
            self.session.placement_mode = PlacementMode.SUBSAMPLE
        self.update_controls()

    def on_sample_mode_changed(self):
        self.session.sample_mode = SampleMode(self.sample_var.get())

    def on_roi_size_changed(self):
        try:
            width, height = self.roi_width_var.get(), self.roi_height_var.get()
        except tk.TclError:
            width, height = self.session.roi_width, self.session.roi_height
        width, height = self.session.set_roi_size(width, height)
        self.roi_width_var.set(width)
        self.roi_height_var.set(height)

    def zoom_in(self):
        if self.session.has_image:
            self.session.view.zoom_in()
            self.canvas.refresh()
            self.update_controls()

    def zoom_out(self):
        if self.session.has_image:
            self.session.view.zoom_out()
            self.canvas.refresh()
            self.update_controls()

    def reset_view(self):
        self.session.view.reset()
        self.canvas.refresh()
        self.update_controls()

    def clear_rois(self):
        self.session.clear_rois()
        self.canvas.refresh()
        self.update_controls()

    def show_preferences(self):
        dialog = PreferencesDialog(self, self.session.config)
        self.wait_window(dialog)
        if dialog.result:
            self.canvas.refresh()

    def show_shortcuts(self):
        shortcuts_text = """Mouse:
  Click               Place ROI (subsample mode)
  Drag                Draw ROI (draw mode)
  Shift+Click         Delete ROI under the cursor
  Wheel               Zoom in/out
  Middle drag         Pan

Keyboard:
  + / -               Zoom in/out
  0                   Reset zoom and pan
  Left / Right        Previous/next image in folder
  Delete              Clear all ROIs"""
        messagebox.showinfo("Mouse and Keyboard", shortcuts_text)

    def show_about(self):
        messagebox.showinfo(
            "About image-roi",
            f"image-roi\n\n"
            f"Transforms and region-of-interest sampling for images.\n\n"
            f"Version {__version__}\n"
            f"Built with tkinter, PIL, and OpenCV {cv2.__version__}"
        )


# ============================================================================
# Main Entry Point
# ============================================================================

def main(argv=None):
    """Main entry point with command-line argument support"""
    logger = setup_error_logging("image-roi")

    parser = argparse.ArgumentParser(
        description="image-roi - apply transforms and mark regions of interest"
    )
    parser.add_argument(
        "image",
        nargs="?",
        type=str,
        help="Path to image file to open automatically (optional)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging with OpenCV diagnostics"
    )
    args = parser.parse_args(argv)

    try:
        if args.debug:
            logger.setLevel(logging.DEBUG)
            log_opencv_diagnostics(logger)

        logger.info(f"Starting image-roi GUI v{__version__}")

        initial_image = None
        if args.image:
            initial_image = Path(args.image)
            if not initial_image.is_file():
                logger.error(f"Image file not found: {args.image}")
                print(f"Error: Image file not found: {args.image}", file=sys.stderr)
                sys.exit(1)

        app = RoiApp(initial_image_path=initial_image)
        logger.info("Application initialized successfully")
        app.mainloop()
        logger.info("Application closed normally")

    except Exception as e:
        log_fatal_error(logger, e, traceback.format_exc())
        try:
            messagebox.showerror(
                "Fatal Error",
                f"An unexpected error occurred:\n\n{e}\n\n"
                f"Error details have been logged to {log_file_name('image-roi')}"
            )
        except tk.TclError:
            print(f"\nFATAL ERROR: {e}", file=sys.stderr)
            print("Error details have been logged. Please check the log file.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
