"""Examples demonstrating progress bars, tables, boxes and console output"""

import os
import sys
import time
import random

from linecraft import (
    track,
    console,
    box,
    center,
    rgb,
    tree,
    table,
    commify,
    get_text_from_bytes,
    ProgressSession,
)


def example_0():
    console.println("=== Example 0: Basic progress bar ===")

    progress = console.progress
    progress.start(max=100, text="Processing items")

    for i in range(1, 100 + 1):
        progress.update(i)
        time.sleep(0.03)

    progress.end()


def example_1():
    console.println("=== Example 1: Messages scroll above the bar ===")

    console.progress.start(max=10, text="Copying files", catch_int=True)

    for i in range(1, 10 + 1):
        time.sleep(random.uniform(0.2, 0.5))
        console.println(f"Copied file_{i}.txt")
        console.progress.update(i)

    console.warnln("Skipped 2 files")
    console.progress.end()


def example_2():
    console.println("=== Example 2: Iterable wrapper ===")

    for _ in track(range(1, 60 + 1), session=console.progress, text="Indexing"):
        time.sleep(0.05)


def example_3():
    console.println("=== Example 3: Unknown total ===")

    def chunks():
        for _ in range(40):
            yield os.urandom(1024)

    received = 0
    for chunk in track(chunks(), session=console.progress, text="Downloading"):
        received += len(chunk)
        time.sleep(0.05)

    console.println(f"Received {get_text_from_bytes(received)}")


def example_4():
    console.println("=== Example 4: Custom styles and glyphs ===")

    with ProgressSession().start(
        max=200,
        width=40,
        braces=["[", "]"],
        filled="=",
        filling=[" ", "-"],
        styles={
            "bar": [rgb(255, 0, 128)],
            "text": ["italic", lambda text: text.upper()],
        },
        text="custom",
    ) as progress:
        for i in range(1, 200 + 1):
            progress.update(i)
            time.sleep(0.01)


def example_5():
    console.println("=== Example 5: ASCII fallback ===")

    with ProgressSession().start(max=50, unicode=False, color=False, indent=4) as progress:
        for i in range(1, 50 + 1):
            progress.update({"amount": i, "text": f"step {i}"})
            time.sleep(0.02)


def example_6():
    console.println("=== Example 6: Tables ===")

    rows = [["Name", "Size", "Modified"]]
    for entry in sorted(os.scandir("."), key=lambda e: e.name):
        stat = entry.stat()
        rows.append([entry.name, commify(stat.st_size), time.ctime(stat.st_mtime)])

    console.println(table(rows, indent=2))
    console.println(console.table(rows, auto_fit=True, header_styles=["bold", "green"]))


def example_7():
    console.println("=== Example 7: Boxes ===")

    console.println(box(center("Hello\nthere, friend", 20), vspace=1))
    console.println(
        box(
            "A longer paragraph of text that is wrapped to fit inside the box.",
            width=24,
            hspace=2,
            styles=["bold", "magenta"],
        )
    )


def example_8():
    console.println("=== Example 8: Directory tree ===")

    console.println(tree(os.path.dirname(os.path.abspath(__file__)) + "/..", exclude=r"^\.|__pycache__"))


if __name__ == "__main__":
    import logging

    logging.basicConfig(filename="examples.log", level=logging.DEBUG)

    if not sys.stdout.isatty():
        console.warnln("Progress bars are only drawn on a terminal")

    for i in range(0, 8 + 1):
        if i != 0:
            time.sleep(1)
        globals()[f"example_{i}"]()
