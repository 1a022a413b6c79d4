import sys
from pathlib import Path

import pytest

# Allow `import tagmarks` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tagmarks.model import TreeNode  # noqa: E402


@pytest.fixture
def sample_tree() -> TreeNode:
    """Two top-level roots, nested folders and one URL bookmarked twice."""
    return TreeNode(
        id="0",
        title="",
        children=[
            TreeNode(
                id="1",
                title="Bookmarks Bar",
                children=[
                    TreeNode(id="10", title="Python docs", url="https://docs.python.org/", date_added=300),
                    TreeNode(
                        id="11",
                        title="Dev",
                        children=[
                            TreeNode(id="110", title="Rust book", url="https://doc.rust-lang.org/book/", date_added=100),
                            TreeNode(id="111", title="", children=[
                                TreeNode(id="1110", title="Hacker News", url="https://news.ycombinator.com/", date_added=200),
                            ]),
                        ],
                    ),
                ],
            ),
            TreeNode(
                id="2",
                title="Other Bookmarks",
                children=[
                    TreeNode(id="20", title="HN again", url="https://news.ycombinator.com/", date_added=400),
                ],
            ),
        ],
    )
