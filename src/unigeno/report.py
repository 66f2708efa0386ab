from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>UniGeno Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>UniGeno Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ run.bam_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ run.ref_path }}</code></td></tr>
      <tr><th>Region</th><td><code>{{ run.region or "all" }}</code></td></tr>
      <tr><th>Samples</th><td>{{ run.samples | join(", ") if run.samples else "(pooled / none)" }}</td></tr>
      <tr><th>Output</th><td><code>{{ output_path }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Model</h3>
    <table>
      {% for key, value in run.config | dictsort %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

<h2>Loci</h2>
<table>
  <tr><th>Loci visited</th><td>{{ run.counts.loci_visited }}</td></tr>
  <tr><th>Callable for SNPs</th><td>{{ run.counts.callable }}</td></tr>
  {% for reason, n in run.skipped.items() %}
  <tr><th>Skipped: {{ reason | replace("_", " ") }}</th><td>{{ n }}</td></tr>
  {% endfor %}
  <tr><th>Shards / threads</th><td>{{ run.shards }} / {{ run.threads }}</td></tr>
  <tr><th>Runtime (s)</th><td>{{ "%.1f" | format(run.runtime_seconds) }}</td></tr>
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Locus outcomes</h3>
    <img src="{{ plots.outcomes }}" alt="locus outcomes">
  </div>
  <div class="card">
    <h3>Call confidence</h3>
    <img src="{{ plots.confidence_hist }}" alt="confidence histogram">
  </div>
</div>
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Depth at callable loci</h3>
    <img src="{{ plots.depth_hist }}" alt="depth histogram">
  </div>
</div>

<h2>Interpretation notes</h2>
<ul>
  <li>Only loci with reads are visited; "no coverage" counts loci whose reads were all filtered.</li>
  <li>All annotations are computed from the filtered context used for calling.</li>
  {% if run.config.genotype_model == "pooled" %}
  <li>Pooled calls carry allele frequencies over the pool but no per-sample genotypes.</li>
  {% endif %}
</ul>

<hr>
<p class="small">UniGeno {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    output_path: str,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        run=run,
        output_path=output_path,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.debug("Report written to %s", out_path)
    return out_path
