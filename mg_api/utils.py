import asyncio
import functools
import inspect
import re
from typing import Any, Callable

import typer

_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def join_url(base: str, path: str) -> str:
    """Join a base URL and a path with exactly one slash between them."""
    return base.rstrip("/") + "/" + path.lstrip("/")


def safe_name(name: str) -> str:
    """Replace characters that are not allowed in file names with underscores."""
    return _UNSAFE_FILENAME_CHARS.sub("_", str(name))


class AsyncTyper(typer.Typer):
    @staticmethod
    def maybe_run_async(decorator: Callable, func: Callable) -> Any:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            def runner(*args: Any, **kwargs: Any) -> Any:
                return asyncio.run(func(*args, **kwargs))

            decorator(runner)
        else:
            decorator(func)
        return func

    def callback(self, *args: Any, **kwargs: Any) -> Any:
        decorator = super().callback(*args, **kwargs)
        return functools.partial(self.maybe_run_async, decorator)

    def command(self, *args: Any, **kwargs: Any) -> Any:
        decorator = super().command(*args, **kwargs)
        return functools.partial(self.maybe_run_async, decorator)
