#!/usr/bin/env python3
"""
PairSync - Two-Pane rsync Front-End

Graphical application for browsing two directory trees side by side, local or
remote over SSH, and synchronizing them with rsync in Force (mirror) or Slurp
(copy only) mode, with a live log of the transfer.

 Author: Gino Bogo
License: MIT
Version: 1.0
"""

from __future__ import annotations

# Standard library imports.
import tkinter as tk

from typing import Optional
from tkinter import filedialog, messagebox, ttk

from libs.ps_config import CONFIG_FILE, load_config, save_config
from libs.ps_connection import ConnectionController
from libs.ps_executor import SyncExecutor
from libs.ps_local import LocalLister, home_directory
from libs.ps_log import console_log
from libs.ps_models import (
    ConnectionState,
    ConnectionStatus,
    Endpoint,
    LogLine,
    PairSyncError,
    SyncDirection,
    SyncMode,
    SyncRun,
)
from libs.ps_remote import RemoteDirectoryService, RemoteProbe, RemoteShell
from libs.ps_session import Pane, SyncSession, UserPrompt
from libs.ps_theme import get_theme_colors


# ============================================================================
# CONSTANTS
# ============================================================================

MIN_WINDOW_WIDTH = 1024
MIN_WINDOW_HEIGHT = 700
LOG_HEIGHT = 12
SIDES = ("left", "right")


# ============================================================================
# DIRECTORY PROMPT CLASS
# ============================================================================


class TkDirectoryPrompt(UserPrompt):
    """Directory picker backed by the Tk file dialog."""

    def __init__(self, root: tk.Tk):
        self.root = root

    def pick_directory(self, starting_at: str) -> Optional[str]:
        chosen = filedialog.askdirectory(
            parent=self.root, initialdir=starting_at or home_directory(), mustexist=True
        )
        return chosen or None


# ============================================================================
# MAIN APPLICATION CLASS
# ============================================================================


class PairSync:
    """Main application class for the PairSync window."""

    # ==========================================================================
    # INITIALIZATION METHODS
    # ==========================================================================

    def __init__(self, root: tk.Tk, config_file: str = CONFIG_FILE):
        """Initialize the PairSync application.

        Args:
            root: The main Tkinter root window
            config_file: Settings file to load and save
        """
        self.root = root
        self.config_file = config_file
        self.config = load_config(config_file, self._log)
        self.colors = get_theme_colors()

        # Remote access shared by both panes.
        self.shell = RemoteShell(
            self._log,
            pool_size=self.config.pool_size,
            connect_timeout=self.config.connect_timeout,
            command_timeout=self.config.command_timeout,
        )
        self.probe = RemoteProbe(
            self.shell, self._log, candidates=self.config.remote_candidates
        )
        self.directory_service = RemoteDirectoryService(self.shell, self._log)
        self.local_lister = LocalLister(self._log)
        self.prompt = TkDirectoryPrompt(root)

        # Panes and sync session.
        self.panes = {
            "left": self._create_pane("left", self.config.left_path),
            "right": self._create_pane("right", self.config.right_path),
        }
        self.executor = SyncExecutor(
            self._log,
            dispatch=self._dispatch,
            candidates=self.config.local_candidates,
            on_log=self._on_log_line,
        )
        self.session = SyncSession(
            self.panes["left"], self.panes["right"], self.executor, self._log
        )
        self.session.on_notice = self._on_notice
        self.session.on_complete = self._on_sync_complete

        # Tk variables.
        self.direction = self.config.sync_direction
        self.direction_text = tk.StringVar(value=self._direction_arrow())
        self.progress_text = tk.StringVar(value="Ready")
        self.host_vars = {side: tk.StringVar() for side in SIDES}
        self.path_vars = {side: tk.StringVar() for side in SIDES}
        self.state_vars = {side: tk.StringVar(value="Local") for side in SIDES}
        self.host_vars["left"].set(self.config.left_host)
        self.host_vars["right"].set(self.config.right_host)

        # UI Components.
        self.widgets = {side: {} for side in SIDES}
        self.sync_buttons = []
        self.log_text: Optional[tk.Text] = None

        self._init_window()
        self._setup_ui()

        for pane in self.panes.values():
            pane.refresh()

    def _create_pane(self, side: str, saved_path: str) -> Pane:
        default = Endpoint.local(saved_path or home_directory())
        controller = ConnectionController(
            self.probe,
            self.directory_service,
            default,
            self._log,
            dispatch=self._dispatch,
        )
        pane = Pane(side, controller, self.local_lister, self._log, dispatch=self._dispatch)
        pane.on_changed = self._on_pane_changed
        pane.on_state_changed = self._on_pane_state
        pane.on_error = self._on_pane_error
        return pane

    def _init_window(self):
        """Initialize main window properties."""
        self.root.title("PairSync - rsync Synchronization Tool")
        self.root.minsize(MIN_WINDOW_WIDTH, MIN_WINDOW_HEIGHT)
        if self.config.geometry:
            self.root.geometry(self.config.geometry)
        self.root.protocol("WM_DELETE_WINDOW", self._on_closing)

    def _dispatch(self, func, *args):
        """Run `func(*args)` on the Tk thread."""
        self.root.after(0, func, *args)

    # ==========================================================================
    # UI CREATION METHODS
    # ==========================================================================

    def _setup_ui(self):
        """Set up the main user interface."""
        main_frame = ttk.Frame(self.root, padding=6)
        main_frame.grid(row=0, column=0, sticky="nsew")
        self.root.columnconfigure(0, weight=1)
        self.root.rowconfigure(0, weight=1)

        main_frame.columnconfigure(0, weight=1)
        main_frame.columnconfigure(2, weight=1)
        main_frame.rowconfigure(0, weight=1)

        self._create_panel(main_frame, "left", column=0)
        self._create_sync_column(main_frame, column=1)
        self._create_panel(main_frame, "right", column=2)
        self._create_log_panel(main_frame)
        self._create_tree_context_menu()
        self._bind_selection_keys()

    def _create_panel(self, parent: ttk.Frame, side: str, column: int):
        """Create one browsing pane with its connection and navigation bars."""
        frame = ttk.LabelFrame(parent, text=side.capitalize(), padding=4)
        frame.grid(row=0, column=column, sticky="nsew", padx=4)
        frame.columnconfigure(1, weight=1)
        frame.rowconfigure(2, weight=1)
        widgets = self.widgets[side]

        # Connection bar.
        ttk.Label(frame, text="Host:").grid(row=0, column=0, sticky="w")
        host_box = ttk.Combobox(
            frame, textvariable=self.host_vars[side], values=self.config.hosts
        )
        host_box.grid(row=0, column=1, sticky="ew", padx=2)
        widgets["host"] = host_box

        conn_bar = ttk.Frame(frame)
        conn_bar.grid(row=0, column=2, sticky="e")
        widgets["connect"] = ttk.Button(
            conn_bar, text="Connect", command=lambda: self._connect(side)
        )
        widgets["retry"] = ttk.Button(
            conn_bar, text="Retry", command=lambda: self._retry(side)
        )
        widgets["disconnect"] = ttk.Button(
            conn_bar, text="Disconnect", command=lambda: self._disconnect(side)
        )
        for i, name in enumerate(("connect", "retry", "disconnect")):
            widgets[name].grid(row=0, column=i, padx=1)
        state_label = tk.Label(conn_bar, textvariable=self.state_vars[side], width=22)
        state_label.grid(row=0, column=3, padx=4)
        widgets["state"] = state_label

        # Navigation bar.
        ttk.Label(frame, text="Path:").grid(row=1, column=0, sticky="w")
        path_entry = ttk.Entry(frame, textvariable=self.path_vars[side])
        path_entry.grid(row=1, column=1, sticky="ew", padx=2, pady=2)
        path_entry.bind("<Return>", lambda event: self._go_to_path(side))
        widgets["path"] = path_entry

        nav_bar = ttk.Frame(frame)
        nav_bar.grid(row=1, column=2, sticky="e")
        pane = self.panes[side]
        nav_buttons = (
            ("Up", pane.navigate_up),
            ("Home", pane.navigate_home),
            ("Refresh", pane.refresh),
            ("Browse", lambda: pane.pick_directory(self.prompt)),
        )
        for i, (text, command) in enumerate(nav_buttons):
            button = ttk.Button(nav_bar, text=text, command=command, width=8)
            button.grid(row=0, column=i, padx=1)
            widgets[text.lower()] = button

        # Listing.
        tree = self._create_tree_view(frame)
        tree.bind("<<TreeviewSelect>>", lambda event: self._on_tree_select(side))
        tree.bind("<Double-1>", lambda event: self._on_tree_double_click(side))
        tree.bind("<Button-3>", lambda event: self._on_tree_right_click(side, event))
        widgets["tree"] = tree

        # Footer.
        footer = ttk.Frame(frame)
        footer.grid(row=3, column=0, columnspan=3, sticky="ew")
        footer.columnconfigure(0, weight=1)
        widgets["status"] = ttk.Label(footer, text="")
        widgets["status"].grid(row=0, column=0, sticky="w")
        widgets["delete"] = ttk.Button(
            footer, text="Delete Selected", command=lambda: self._delete_selected(side)
        )
        widgets["delete"].grid(row=0, column=1, sticky="e")

        self._update_connection_widgets(side, pane.state)

    def _create_tree_view(self, parent: ttk.LabelFrame) -> ttk.Treeview:
        """Create a tree view for displaying one directory level."""
        container = ttk.Frame(parent)
        container.grid(row=2, column=0, columnspan=3, sticky="nsew")
        container.columnconfigure(0, weight=1)
        container.rowconfigure(0, weight=1)

        tree = ttk.Treeview(
            container, columns=("size", "modified"), selectmode="extended"
        )
        tree.heading("#0", text="Name", anchor="w")
        tree.heading("size", text="Size", anchor="e")
        tree.heading("modified", text="Modified", anchor="w")
        tree.column("#0", width=260, stretch=True)
        tree.column("size", width=90, anchor="e", stretch=False)
        tree.column("modified", width=130, stretch=False)
        tree.tag_configure("dir", foreground=self.colors["entries"]["directory"])
        tree.tag_configure("file", foreground=self.colors["entries"]["file"])

        scrollbar = ttk.Scrollbar(container, orient="vertical", command=tree.yview)
        tree.configure(yscrollcommand=scrollbar.set)
        tree.grid(row=0, column=0, sticky="nsew")
        scrollbar.grid(row=0, column=1, sticky="ns")
        return tree

    def _create_tree_context_menu(self):
        """Create context menu for tree views."""
        self._context_menu_side = "left"
        self.tree_context_menu = tk.Menu(self.root, tearoff=0)
        self.tree_context_menu.add_command(
            label="Select All",
            command=lambda: self._select_all(self._context_menu_side),
        )
        self.tree_context_menu.add_command(
            label="Deselect All",
            command=lambda: self._deselect_all(self._context_menu_side),
        )

    def _bind_selection_keys(self):
        """Ctrl+Shift+A / Ctrl+Shift+D act on the left pane, Ctrl+Alt on the right."""
        self.root.bind("<Control-A>", lambda event: self._select_all("left"))
        self.root.bind("<Control-Alt-a>", lambda event: self._select_all("right"))
        self.root.bind("<Control-D>", lambda event: self._deselect_all("left"))
        self.root.bind("<Control-Alt-d>", lambda event: self._deselect_all("right"))

    def _create_sync_column(self, parent: ttk.Frame, column: int):
        """Create the direction toggle and sync buttons between the panes."""
        frame = ttk.Frame(parent, padding=4)
        frame.grid(row=0, column=column, sticky="ns")

        ttk.Label(frame, text="SYNC").pack(pady=(40, 4))
        ttk.Button(
            frame, textvariable=self.direction_text, command=self._toggle_direction, width=8
        ).pack(pady=4)

        for mode in SyncMode:
            colors = self.colors["modes"][mode.value]
            button = tk.Button(
                frame,
                text=mode.value,
                bg=colors["bg"],
                fg=colors["fg"],
                width=8,
                height=2,
                command=lambda m=mode: self._synchronize(m),
            )
            button.pack(pady=6)
            self.sync_buttons.append(button)

        self.cancel_button = ttk.Button(
            frame, text="Cancel", command=self._cancel_sync, state="disabled", width=8
        )
        self.cancel_button.pack(pady=(20, 4))
        ttk.Button(frame, text="Clear Log", command=self._clear_log, width=8).pack(pady=4)

    def _create_log_panel(self, parent: ttk.Frame):
        """Create the sync log and progress line."""
        frame = ttk.LabelFrame(parent, text="Log", padding=4)
        frame.grid(row=1, column=0, columnspan=3, sticky="nsew", pady=(6, 0))
        frame.columnconfigure(0, weight=1)

        colors = self.colors["log"]
        self.log_text = tk.Text(
            frame,
            height=LOG_HEIGHT,
            state="disabled",
            wrap="none",
            bg=colors["background"],
            fg=colors["text"],
            font=("Courier New", 10),
        )
        self.log_text.tag_configure("error", foreground=colors["error"])
        self.log_text.tag_configure("time", foreground=colors["time"])
        scrollbar = ttk.Scrollbar(frame, orient="vertical", command=self.log_text.yview)
        self.log_text.configure(yscrollcommand=scrollbar.set)
        self.log_text.grid(row=0, column=0, sticky="nsew")
        scrollbar.grid(row=0, column=1, sticky="ns")

        ttk.Label(frame, textvariable=self.progress_text).grid(
            row=1, column=0, columnspan=2, sticky="w"
        )

    # ==========================================================================
    # PANE METHODS
    # ==========================================================================

    def _connect(self, side: str):
        host = self.host_vars[side].get().strip()
        if not host:
            messagebox.showerror("Error", "Enter a host such as user@hostname.")
            return
        try:
            self.panes[side].connect(host)
        except (PairSyncError, ValueError) as e:
            messagebox.showerror("Error", str(e))
            return
        self.config.remember_host(host)
        for s in SIDES:
            self.widgets[s]["host"].configure(values=self.config.hosts)

    def _retry(self, side: str):
        try:
            self.panes[side].retry()
        except PairSyncError as e:
            messagebox.showerror("Error", str(e))

    def _disconnect(self, side: str):
        self.panes[side].disconnect()

    def _go_to_path(self, side: str):
        path = self.path_vars[side].get().strip()
        if not path:
            return
        try:
            self.panes[side].navigate(path)
        except PairSyncError as e:
            messagebox.showerror("Error", str(e))

    def _delete_selected(self, side: str):
        pane = self.panes[side]
        paths = pane.selected_paths()
        if not pane.controller.is_connected or not paths:
            return
        if messagebox.askyesno(
            "Delete", f"Permanently delete {len(paths)} remote item(s)?"
        ):
            pane.delete_selected()

    def _on_pane_changed(self, pane: Pane):
        """Repopulate a tree view after a listing."""
        tree = self.widgets[pane.name]["tree"]
        tree.delete(*tree.get_children())
        for entry in pane.entries:
            tree.insert(
                "",
                "end",
                iid=entry.full_path,
                text=entry.name + ("/" if entry.is_directory else ""),
                values=(entry.formatted_size, entry.formatted_date),
                tags=("dir" if entry.is_directory else "file",),
            )

        endpoint = pane.endpoint
        self.path_vars[pane.name].set(endpoint.path if endpoint else "")
        num_dirs = sum(1 for e in pane.entries if e.is_directory)
        num_files = len(pane.entries) - num_dirs
        self.widgets[pane.name]["status"].configure(
            text=f"{endpoint or ''}  ({num_dirs} folders, {num_files} files)"
        )

    def _on_pane_state(self, pane: Pane, state: ConnectionState):
        self._update_connection_widgets(pane.name, state)

    def _update_connection_widgets(self, side: str, state: ConnectionState):
        widgets = self.widgets.get(side)
        if not widgets:
            return
        status = state.status
        label = "Local" if status is ConnectionStatus.DISCONNECTED else str(state)
        self.state_vars[side].set(label)
        widgets["state"].configure(fg=self.colors["connection"][status.value])

        can_connect = status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.FAILED)
        widgets["connect"].configure(state="normal" if can_connect else "disabled")
        widgets["retry"].configure(
            state="normal" if status is ConnectionStatus.FAILED else "disabled"
        )
        widgets["disconnect"].configure(
            state="disabled" if status is ConnectionStatus.DISCONNECTED else "normal"
        )
        widgets["delete"].configure(
            state="normal" if status is ConnectionStatus.CONNECTED else "disabled"
        )
        widgets["browse"].configure(
            state="normal" if status is ConnectionStatus.DISCONNECTED else "disabled"
        )
        can_browse = status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTED)
        for name in ("up", "home", "refresh", "path"):
            widgets[name].configure(state="normal" if can_browse else "disabled")

    def _on_pane_error(self, pane: Pane, message: str):
        messagebox.showerror("Error", f"{pane.name.capitalize()} pane: {message}")

    def _on_tree_select(self, side: str):
        tree = self.widgets[side]["tree"]
        self.panes[side].select(tree.selection())

    def _on_tree_right_click(self, side: str, event):
        self._context_menu_side = side
        self.tree_context_menu.tk_popup(event.x_root, event.y_root)

    def _select_all(self, side: str):
        """Select every listed item of one pane."""
        pane = self.panes[side]
        tree = self.widgets[side]["tree"]
        pane.select_all()
        tree.selection_set(tree.get_children())

    def _deselect_all(self, side: str):
        """Clear the selection of one pane."""
        pane = self.panes[side]
        tree = self.widgets[side]["tree"]
        pane.clear_selection()
        tree.selection_remove(tree.selection())

    def _on_tree_double_click(self, side: str):
        tree = self.widgets[side]["tree"]
        item_id = tree.focus()
        pane = self.panes[side]
        entry = next((e for e in pane.entries if e.full_path == item_id), None)
        if entry is not None and entry.is_directory:
            pane.navigate(entry.full_path)

    # ==========================================================================
    # SYNCHRONIZATION METHODS
    # ==========================================================================

    def _direction_arrow(self) -> str:
        return "→" if self.direction is SyncDirection.LEFT_TO_RIGHT else "←"

    def _toggle_direction(self):
        self.direction = self.direction.reversed()
        self.direction_text.set(self._direction_arrow())

    def _confirm_whole_directory(self, dir_name: str) -> bool:
        return messagebox.askyesno(
            "Sync Entire Directory?",
            f'No files are selected. This will sync the entire "{dir_name}" directory.',
        )

    def _synchronize(self, mode: SyncMode):
        """Start a sync in the current direction."""
        try:
            run = self.session.sync(mode, self.direction, self._confirm_whole_directory)
        except PairSyncError as e:
            messagebox.showerror("Sync", str(e))
            return
        if run is None:
            return
        if run.is_running:
            self._set_sync_controls(running=True)
        self.progress_text.set(run.progress)

    def _cancel_sync(self):
        self.session.cancel()

    def _on_sync_complete(self, run: SyncRun):
        self._set_sync_controls(running=False)
        self.progress_text.set(run.progress)

    def _set_sync_controls(self, running: bool):
        for button in self.sync_buttons:
            button.configure(state="disabled" if running else "normal")
        self.cancel_button.configure(state="normal" if running else "disabled")

    def _on_notice(self, message: str, is_error: bool):
        if is_error:
            messagebox.showerror("Sync", message)

    # ==========================================================================
    # LOG METHODS
    # ==========================================================================

    def _on_log_line(self, run: SyncRun, line: LogLine):
        """Append one run log line to the log panel."""
        if self.log_text is None:
            return
        self.log_text.configure(state="normal")
        self.log_text.insert("end", f"[{line.formatted_time}] ", ("time",))
        self.log_text.insert("end", line.text + "\n", ("error",) if line.is_error else ())
        self.log_text.configure(state="disabled")
        self.log_text.see("end")
        if not line.is_error:
            self.progress_text.set(run.progress)

    def _clear_log(self):
        if not self.executor.clear():
            return
        if self.log_text is not None:
            self.log_text.configure(state="normal")
            self.log_text.delete("1.0", "end")
            self.log_text.configure(state="disabled")
        self.progress_text.set("Ready")

    # ==========================================================================
    # HELPER METHODS
    # ==========================================================================

    def _log(self, message: str):
        """Log message to console.

        Args:
            message: Message to log
        """
        console_log(message)

    # ==========================================================================
    # EVENT HANDLERS
    # ==========================================================================

    def _on_closing(self):
        """Handle window close event."""
        if self.executor.is_running:
            if not messagebox.askyesno("Quit", "A sync is running. Cancel it and quit?"):
                return
            self.executor.cancel()

        left, right = self.panes["left"], self.panes["right"]
        self.config.geometry = self.root.geometry()
        self.config.left_path = left.local_endpoint.path
        self.config.right_path = right.local_endpoint.path
        self.config.left_host = self.host_vars["left"].get().strip()
        self.config.right_host = self.host_vars["right"].get().strip()
        self.config.direction = self.direction.value
        try:
            save_config(self.config, self.config_file)
        except OSError as e:
            self._log(f"Warning: could not save {self.config_file}: {e}")

        self.shell.close_all()
        self.root.destroy()


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================


def main():
    """Main entry point for the application."""
    root = tk.Tk()
    PairSync(root)
    root.mainloop()


if __name__ == "__main__":
    main()
