import pytest

from md2pdf.engines.models import (
    EngineManagerConfig,
    EngineOptions,
    GenerationContext,
    ResourceLimits,
)


@pytest.fixture
def sample_html():
    return """<html>
<body>
<h1>Test Document</h1>
<p>This is a test paragraph.</p>
<h2>Details</h2>
<ul>
<li>Item 1</li>
<li>Item 2</li>
</ul>
<ol>
<li>First</li>
<li>Second</li>
</ol>
<table>
<tr><th>Name</th><th>Value</th></tr>
<tr><td>A</td><td>1</td></tr>
<tr><td>B</td><td>2</td></tr>
</table>
<pre><code class="language-python">print("hello")</code></pre>
</body>
</html>
"""


@pytest.fixture
def output_dir(tmp_path):
    out = tmp_path / "output"
    out.mkdir()
    return out


@pytest.fixture
def context(output_dir):
    return GenerationContext(
        html_content="<h1>Hello</h1><p>World</p>",
        output_path=str(output_dir / "out.pdf"),
        title="Hello",
    )


@pytest.fixture
def options():
    return EngineOptions()


@pytest.fixture
def manager_config():
    """Fast config: no periodic health checks, no retry pause."""
    return EngineManagerConfig(
        primary_engine="primary",
        fallback_engines=["fallback"],
        health_check_interval=0,
        max_retries=2,
        retry_delay=0,
        enable_metrics=True,
        resource_limits=ResourceLimits(task_timeout=5_000),
    )
