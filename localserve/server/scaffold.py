"""
localserve/server/scaffold.py

Creates a small demo site (index.html + style.css) to point a server at.
Convenience only; not part of the server lifecycle.
"""

from __future__ import annotations

import html
import logging
from pathlib import Path

from localserve.errors import DirectoryExistsError, LocalServeError, ErrorCode

logger = logging.getLogger(__name__)

INDEX_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Local Web Server Test Page</title>
    <link rel="stylesheet" href="style.css">
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, Cantarell, sans-serif;
            max-width: 800px;
            margin: 0 auto;
            padding: 40px 20px;
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            color: white;
        }}
        .container {{
            background: rgba(255, 255, 255, 0.1);
            border-radius: 20px;
            padding: 40px;
        }}
        .success {{
            background: rgba(16, 185, 129, 0.2);
            border-left: 4px solid #10b981;
            padding: 15px;
            border-radius: 8px;
            margin: 20px 0;
        }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Success!</h1>
        <div class="success">
            <strong>Your local web server is running!</strong>
        </div>
        <p>This is a test page created by LocalServe. You can now serve static files from this directory.</p>
        <h2>What you can do:</h2>
        <ul>
            <li>Add HTML, CSS, and JavaScript files to this directory</li>
            <li>Test your web applications locally</li>
            <li>Serve images, videos, and other static assets</li>
            <li>Enable directory listing to browse files</li>
            <li>Use CORS for development</li>
            <li>Monitor requests with logging</li>
        </ul>
        <p>Directory: <code>{path}</code></p>
    </div>
</body>
</html>
"""

STYLE_TEMPLATE = """/* Add your custom styles here */
body {
    margin: 0;
    padding: 0;
}
"""


def create_test_directory(path: str) -> str:
    """
    Create `path` with a sample index.html and style.css.

    Raises:
        DirectoryExistsError: something already exists at `path`
        LocalServeError (FS_WRITE_FAILED): the directory or files could not be written
    """
    target = Path(path).expanduser()
    details = {"path": path}

    if target.exists():
        raise DirectoryExistsError(
            f"Directory '{path}' already exists. Please choose a different name or delete the existing directory.",
            details,
        )

    try:
        target.mkdir(parents=True)
        (target / "index.html").write_text(INDEX_TEMPLATE.format(path=html.escape(path)), encoding="utf-8")
        (target / "style.css").write_text(STYLE_TEMPLATE, encoding="utf-8")
    except OSError as exc:
        raise LocalServeError(
            f"Failed to create test directory '{path}': {exc}",
            details,
            code=ErrorCode.FS_WRITE_FAILED,
        ) from exc

    logger.info("[Scaffold] Created test directory at %s", target)
    return f"Test directory created successfully at '{path}'"
