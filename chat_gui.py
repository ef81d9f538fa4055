"""Tkinter view for SHZ-GPT.

The window mirrors a classic chat layout: a header, a settings panel on the
right, the conversation in the centre and the prompt entry at the bottom.
Replies are laid out block by block using the spans produced by
:func:`markdown_blocks.layout_blocks`; this module only maps span tags to
tkinter text styles.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from markdown_blocks import MAX_STYLED_HEADING_LEVEL, TOKEN_TAGS

try:
    import tkinter as tk
    from tkinter import messagebox, scrolledtext
except ModuleNotFoundError as exc:  # pragma: no cover - depends on environment
    raise RuntimeError(
        "Tkinter is required to run the SHZ-GPT GUI. "
        "Install the Python Tk bindings for your platform."
    ) from exc


LOGGER = logging.getLogger("shz_gpt")

WINDOW_TITLE = "SHZ-GPT - OpenAI Chatbot"
BODY_FONT = ("Helvetica", 12)
CODE_FONT = ("Courier", 11)

# Bubble colours per role; tkinter has no alpha so these are pre-blended.
ROLE_STYLES: Dict[str, Dict[str, Any]] = {
    "user": {"background": "#5c5470", "justify": tk.RIGHT, "lmargin1": 160, "lmargin2": 160, "rmargin": 12},
    "system": {"background": "#5c5470", "justify": tk.RIGHT, "lmargin1": 160, "lmargin2": 160, "rmargin": 12},
    "assistant": {"background": "#352f44", "justify": tk.LEFT, "lmargin1": 12, "lmargin2": 12, "rmargin": 160},
}

TOKEN_COLOURS = {
    "tok-comment": "#75715e",
    "tok-string": "#e6db74",
    "tok-number": "#ae81ff",
    "tok-keyword": "#f92672",
    "tok-function": "#a6e22e",
    "tok-class": "#a6e22e",
    "tok-builtin": "#66d9ef",
    "tok-decorator": "#fd971f",
    "tok-operator": "#f92672",
    "tok-plain": "#f8f8f2",
}


class ChatGUI:
    """Tkinter desktop client driving a :class:`main.ChatSession`."""

    def __init__(self, session: Any) -> None:
        self._session = session
        self._config = session.config
        defaults = self._config.generation_settings()

        self._root = tk.Tk()
        self._root.title(WINDOW_TITLE)
        self._root.geometry("1000x680")
        self._root.protocol("WM_DELETE_WINDOW", self._on_close)

        header = tk.Label(self._root, text=WINDOW_TITLE, anchor=tk.W, font=("Helvetica", 13, "bold"))
        header.pack(side=tk.TOP, fill=tk.X, padx=12, pady=(8, 0))

        self._status_var = tk.StringVar(value="Ready")
        status_label = tk.Label(self._root, textvariable=self._status_var, anchor=tk.W, relief=tk.SUNKEN)
        status_label.pack(side=tk.BOTTOM, fill=tk.X, padx=12, pady=(0, 8))

        input_frame = tk.Frame(self._root)
        input_frame.pack(side=tk.BOTTOM, fill=tk.X, padx=12, pady=8)

        self._user_entry = tk.Entry(input_frame, font=BODY_FONT)
        self._user_entry.pack(side=tk.LEFT, fill=tk.X, expand=True)
        self._user_entry.bind("<Return>", self._send_message_event)

        self._send_button = tk.Button(input_frame, text="Send", command=self._send_message_direct)
        self._send_button.pack(side=tk.LEFT, padx=(8, 0))

        side_panel = tk.Frame(self._root, width=240)
        side_panel.pack(side=tk.RIGHT, fill=tk.Y, padx=(0, 12), pady=8)

        tk.Label(side_panel, text="System Prompt", anchor=tk.W).pack(fill=tk.X)
        self._system_prompt_var = tk.StringVar(value=defaults.system_prompt)
        tk.Entry(side_panel, textvariable=self._system_prompt_var).pack(fill=tk.X, pady=(0, 8))

        tk.Label(side_panel, text="Model", anchor=tk.W).pack(fill=tk.X)
        models = self._session.model_choices(defaults.model)
        self._model_var = tk.StringVar(value=defaults.model)
        tk.OptionMenu(side_panel, self._model_var, *models).pack(fill=tk.X, pady=(0, 8))

        tk.Label(side_panel, text="Temperature", anchor=tk.W).pack(fill=tk.X)
        self._temperature_var = tk.DoubleVar(value=defaults.temperature)
        tk.Scale(
            side_panel,
            variable=self._temperature_var,
            from_=0.0,
            to=2.0,
            resolution=0.1,
            orient=tk.HORIZONTAL,
        ).pack(fill=tk.X, pady=(0, 8))

        tk.Label(side_panel, text="Max Tokens", anchor=tk.W).pack(fill=tk.X)
        self._max_tokens_var = tk.IntVar(value=min(defaults.max_tokens, 1024))
        tk.Scale(
            side_panel,
            variable=self._max_tokens_var,
            from_=0,
            to=1024,
            orient=tk.HORIZONTAL,
        ).pack(fill=tk.X)

        self._chat_display = scrolledtext.ScrolledText(
            self._root,
            wrap=tk.WORD,
            font=BODY_FONT,
            background="#1e1b29",
            foreground="#ffffff",
            state=tk.DISABLED,
        )
        self._chat_display.pack(side=tk.LEFT, padx=12, pady=8, fill=tk.BOTH, expand=True)
        self._configure_tags()
        self._append_info("Session initialised. Messages will appear here.\n")
        self._root.after(self._config.poll_interval_ms, self._poll_replies)

    def _configure_tags(self) -> None:
        # Tags configured later take priority, so code styling overrides bubbles.
        display = self._chat_display
        for role, options in ROLE_STYLES.items():
            display.tag_configure(role, spacing1=2, spacing3=2, **options)
        display.tag_configure("role-label", font=("Helvetica", 9, "bold"), foreground="#dbd8e3")
        display.tag_configure("info", foreground="#7f7f7f")
        display.tag_configure("text", foreground="#faf0e6")
        for level in range(1, MAX_STYLED_HEADING_LEVEL + 1):
            size = max(12, 22 - 2 * level)
            display.tag_configure(f"h{level}", font=("Helvetica", size, "bold"), foreground="#ffffff")
        display.tag_configure("code-lang", font=("Courier", 9, "italic"), foreground="#a59fb8")
        display.tag_configure("code", font=CODE_FONT, background="#272822")
        for tag in TOKEN_TAGS:
            display.tag_configure(tag, foreground=TOKEN_COLOURS.get(tag, "#f8f8f2"))

    def _send_message_event(self, event: Any) -> None:  # pragma: no cover - GUI
        self._send_message_direct()

    def _current_settings(self):
        settings = self._config.generation_settings()
        settings.model = self._model_var.get()
        settings.temperature = round(float(self._temperature_var.get()), 1)
        settings.max_tokens = int(self._max_tokens_var.get())
        settings.system_prompt = self._system_prompt_var.get()
        return settings

    def _send_message_direct(self) -> None:
        raw_input = self._user_entry.get()
        if not raw_input.strip():
            return
        if self._session.busy:
            self._status_var.set("Waiting for response...")
            return

        if not self._session.submit(raw_input, self._current_settings()):
            return
        self._user_entry.delete(0, tk.END)
        self._render_message(self._session.history.last())
        self._send_button.configure(state=tk.DISABLED)
        self._status_var.set("Waiting for response...")

    def _poll_replies(self) -> None:
        self._session.collect(self._on_reply, self._on_failure)
        self._root.after(self._config.poll_interval_ms, self._poll_replies)

    def _on_reply(self, message: Any) -> None:
        self._render_message(message)
        self._status_var.set(f"Ready | Messages: {len(self._session.history)}")
        self._send_button.configure(state=tk.NORMAL)

    def _on_failure(self, reason: str) -> None:
        self._status_var.set("Request failed")
        self._send_button.configure(state=tk.NORMAL)
        messagebox.showerror("Request failed", f"The language model could not be reached: {reason}")

    def _render_message(self, message: Any) -> None:
        role = message.role.value
        display = self._chat_display
        display.configure(state=tk.NORMAL)
        display.insert(tk.END, f"{role.capitalize()}\n", ("role-label", role))
        for span in self._session.render(message):
            display.insert(tk.END, span.text, span.tags + (role,))
        display.insert(tk.END, "\n")
        display.configure(state=tk.DISABLED)
        display.yview(tk.END)

    def _append_info(self, text: str) -> None:
        self._chat_display.configure(state=tk.NORMAL)
        self._chat_display.insert(tk.END, text, "info")
        self._chat_display.configure(state=tk.DISABLED)

    def _on_close(self) -> None:
        if messagebox.askokcancel("Quit", "Do you really want to exit SHZ-GPT?"):
            self._session.shutdown()
            self._root.destroy()

    def run(self) -> None:  # pragma: no cover - GUI loop
        LOGGER.info("Starting GUI loop")
        self._root.mainloop()
