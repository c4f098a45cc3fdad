"""
Nginx server block generation for managed sites.

A site with a port is proxied to 127.0.0.1:<port>; a site without one is
served as a static tree from its root. When certificate material exists for
the domain, plain HTTP redirects to an ssl listener carrying the same rules.

Rendered configs are written to the generated configs directory, one file per
domain, and activated by the reload gateway.
"""

import logging
from pathlib import Path

from .config import Config, config
from .sites import Site, validate_domain, validate_root

logger = logging.getLogger(__name__)

INDENT = "    "


def cert_paths(domain: str, certs_dir: Path = None) -> tuple[Path, Path]:
    """Certificate chain and key locations for a domain."""
    base = Path(certs_dir or config.certs_dir) / domain
    return base / "fullchain.pem", base / "privkey.pem"


def tls_material_present(domain: str, certs_dir: Path = None) -> bool:
    validate_domain(domain)
    cert, key = cert_paths(domain, certs_dir)
    return cert.is_file() and key.is_file()


def _site_rules(site: Site) -> list[str]:
    """Proxy rules when a port is set, static rules otherwise. Never both."""
    if site.port:
        return [
            f"{INDENT}location / {{",
            f"{INDENT * 2}proxy_pass http://127.0.0.1:{site.port};",
            f"{INDENT * 2}proxy_http_version 1.1;",
            f"{INDENT * 2}proxy_set_header Host $host;",
            f"{INDENT * 2}proxy_set_header X-Real-IP $remote_addr;",
            f"{INDENT * 2}proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
            f"{INDENT * 2}proxy_set_header X-Forwarded-Proto $scheme;",
            f"{INDENT}}}",
        ]
    # Records built with model_construct skip field validation
    validate_root(site.root)
    return [
        f"{INDENT}root {site.root};",
        f"{INDENT}index index.html index.htm;",
        f"{INDENT}location / {{",
        f"{INDENT * 2}try_files $uri $uri/ =404;",
        f"{INDENT}}}",
    ]


def render_site_config(site: Site, tls: bool = False, certs_dir: Path = None) -> str:
    """
    Generate the nginx config text for a site.

    Pure string construction: identical arguments give byte-identical output.
    """
    lines = [
        f"# {site.domain} - generated by BlockHead, do not edit manually",
        "",
    ]

    if not tls:
        lines.extend([
            "server {",
            f"{INDENT}listen 80;",
            f"{INDENT}server_name {site.domain};",
            *_site_rules(site),
            "}",
        ])
        return "\n".join(lines) + "\n"

    cert, key = cert_paths(site.domain, certs_dir)
    lines.extend([
        "server {",
        f"{INDENT}listen 80;",
        f"{INDENT}server_name {site.domain};",
        f"{INDENT}return 301 https://$host$request_uri;",
        "}",
        "",
        "server {",
        f"{INDENT}listen 443 ssl;",
        f"{INDENT}server_name {site.domain};",
        f"{INDENT}ssl_certificate {cert};",
        f"{INDENT}ssl_certificate_key {key};",
        *_site_rules(site),
        "}",
    ])
    return "\n".join(lines) + "\n"


def config_path(domain: str, cfg: Config = None) -> Path:
    """Location of the rendered config for a domain."""
    cfg = cfg or config
    validate_domain(domain)
    return cfg.generated_dir / domain


def write_site_config(site: Site, cfg: Config = None) -> Path:
    """Render the site's config (TLS auto-detected) and write it to disk."""
    cfg = cfg or config
    path = config_path(site.domain, cfg)
    tls = tls_material_present(site.domain, cfg.certs_dir)
    content = render_site_config(site, tls=tls, certs_dir=cfg.certs_dir)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    logger.info(f"Nginx config generated for {site.domain} at {path} (tls={tls})")
    return path


def read_site_config(domain: str, cfg: Config = None) -> str | None:
    path = config_path(domain, cfg)
    if not path.is_file():
        return None
    return path.read_text()


def remove_site_config(domain: str, cfg: Config = None) -> bool:
    path = config_path(domain, cfg)
    if not path.exists():
        return False
    path.unlink()
    logger.info(f"Removed generated config {path}")
    return True
