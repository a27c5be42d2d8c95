from typing import List, Optional
from uuid import UUID
import base64
import binascii
import os
import re
import shutil

import aiofiles
from cryptography import x509

from archon_node.core.config import ProxyType, SSLMode, Settings
from archon_node.core.exceptions import CertificateError, ConfigurationError
from archon_node.core.logger import setup_logger
from archon_node.schemas.ssl import SSLInfo
from archon_node.utils.shell import command_exists, run_command

logger = setup_logger(__name__)

CERT_FILENAME = "cert.pem"
KEY_FILENAME = "key.pem"
LIVE_CERT_FILENAME = "fullchain.pem"
LIVE_KEY_FILENAME = "privkey.pem"

def extract_sans(cert_path: str) -> List[str]:
    """读取PEM证书中的DNS SAN"""
    try:
        with open(cert_path, 'rb') as f:
            cert = x509.load_pem_x509_certificate(f.read())
    except (OSError, ValueError) as e:
        raise CertificateError(f"failed to parse certificate {cert_path}: {e}")
    try:
        extension = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return extension.value.get_values_for_type(x509.DNSName)

def decode_base64(value: str) -> bytes:
    """严格解码base64, 允许按行折断(如 base64 命令默认76列换行)"""
    return base64.b64decode(value.strip().replace("\r", "").replace("\n", ""), validate=True)

class SSLService:
    """SSL证书服务"""

    def __init__(
        self,
        mode: str,
        cert_dir: str,
        email: str = "",
        proxy_type: str = ProxyType.NGINX.value,
        live_dir: str = "/etc/letsencrypt/live",
        webroot: str = "/var/www/certbot",
        staging: bool = False,
        certbot: str = "certbot",
    ):
        try:
            self.mode = SSLMode(mode)
        except ValueError:
            raise ConfigurationError(f"unsupported SSL mode: {mode}")
        self.cert_dir = cert_dir
        self.email = email
        self.proxy_type = proxy_type
        self.live_dir = live_dir
        self.webroot = webroot
        self.staging = staging
        self.certbot = certbot

    @classmethod
    def from_settings(cls, settings: Settings) -> "SSLService":
        return cls(
            mode=settings.SSL_MODE,
            cert_dir=settings.SSL_CERT_DIR,
            email=settings.SSL_EMAIL,
            proxy_type=settings.PROXY_TYPE,
            live_dir=settings.LETSENCRYPT_LIVE_DIR,
            webroot=settings.CERTBOT_WEBROOT,
            staging=settings.LETSENCRYPT_STAGING,
        )

    def site_cert_dir(self, site_id: UUID) -> str:
        return os.path.join(self.cert_dir, str(site_id))

    async def ensure_certificate(
        self,
        site_id: UUID,
        domains: List[str],
        cert_b64: Optional[str] = None,
        key_b64: Optional[str] = None,
        email: Optional[str] = None,
    ) -> SSLInfo:
        """
        确保证书存在并返回证书/私钥路径

        多个域名使用同一张SAN证书, 以第一个域名为主域名。
        traefik-auto模式下返回空路径。
        """
        if not domains:
            raise CertificateError("at least one domain is required")

        if self.mode == SSLMode.MANUAL:
            return await self._handle_manual(site_id, cert_b64, key_b64)
        if self.mode == SSLMode.LETSENCRYPT:
            return await self._handle_letsencrypt(domains, email or self.email)
        return SSLInfo()

    async def _handle_manual(self, site_id: UUID, cert_b64: Optional[str], key_b64: Optional[str]) -> SSLInfo:
        """写入用户提供的证书"""
        if not cert_b64 or not key_b64:
            raise CertificateError("manual SSL mode requires certificate and key")

        # 先解码, 失败时不创建任何目录
        try:
            cert_data = decode_base64(cert_b64)
        except (binascii.Error, ValueError) as e:
            raise CertificateError(f"failed to decode certificate: {e}")
        try:
            key_data = decode_base64(key_b64)
        except (binascii.Error, ValueError) as e:
            raise CertificateError(f"failed to decode key: {e}")

        site_dir = self.site_cert_dir(site_id)
        cert_path = os.path.join(site_dir, CERT_FILENAME)
        key_path = os.path.join(site_dir, KEY_FILENAME)
        try:
            os.makedirs(site_dir, mode=0o755, exist_ok=True)
            async with aiofiles.open(cert_path, 'wb') as f:
                await f.write(cert_data)
            os.chmod(cert_path, 0o644)
            async with aiofiles.open(key_path, 'wb') as f:
                await f.write(key_data)
            os.chmod(key_path, 0o600)
        except OSError as e:
            raise CertificateError(f"failed to write certificate files: {e}")

        logger.info(f"[证书] 已写入手动证书: {site_dir}")
        return SSLInfo(cert_path=cert_path, key_path=key_path)

    async def _handle_letsencrypt(self, domains: List[str], email: str) -> SSLInfo:
        """通过certbot申请SAN证书"""
        if not email:
            raise CertificateError("email is required for Let's Encrypt")
        if not command_exists(self.certbot):
            raise CertificateError(f"{self.certbot} is not installed")

        primary_domain = domains[0]

        # 已有证书覆盖全部域名时直接复用
        existing = self.find_certificates(primary_domain, domains)
        if existing is not None:
            logger.info(f"[证书] 复用已有证书: {existing.cert_path}")
            return existing

        command = [
            self.certbot, "certonly",
            "--non-interactive",
            "--agree-tos",
            "--email", email,
        ]
        if self.staging:
            command.append("--staging")

        if self.proxy_type == ProxyType.NGINX.value:
            command.extend(["--webroot", "-w", self.webroot])
        elif self.proxy_type == ProxyType.APACHE.value:
            command.append("--apache")
        elif self.proxy_type == ProxyType.TRAEFIK.value:
            raise CertificateError("Traefik should use traefik-auto SSL mode, not letsencrypt")
        else:
            command.extend(["--standalone", "--http-01-port", "80"])

        for domain in domains:
            command.extend(["-d", domain])
        command.extend(["--cert-name", primary_domain])

        logger.info(f"[证书] 申请证书: {', '.join(domains)}")
        output = await run_command(command, timeout=600)
        logger.info(f"Certbot输出: {output}")

        info = self.find_certificates(primary_domain, domains) or self.find_certificates(primary_domain)
        if info is None:
            raise CertificateError(f"证书文件未生成: {primary_domain} ({self.live_dir})")
        return info

    def find_certificates(self, domain: str, domains: Optional[List[str]] = None) -> Optional[SSLInfo]:
        """
        在letsencrypt live目录中查找证书

        兼容certbot生成的 <domain>-0001 这类编号目录。传入 domains 时只返回
        SAN覆盖全部域名的证书。
        """
        try:
            entries = os.listdir(self.live_dir)
        except OSError:
            return None

        pattern = re.compile(re.escape(domain) + r"-\d+$")
        numbered = sorted((name for name in entries if pattern.match(name)), reverse=True)
        candidates = ([domain] if domain in entries else []) + numbered

        for name in candidates:
            cert_path = os.path.join(self.live_dir, name, LIVE_CERT_FILENAME)
            key_path = os.path.join(self.live_dir, name, LIVE_KEY_FILENAME)
            if not (os.path.exists(cert_path) and os.path.exists(key_path)):
                continue
            if domains:
                try:
                    covered = extract_sans(cert_path)
                except CertificateError as e:
                    logger.warning(str(e))
                    continue
                if not all(d in covered for d in domains):
                    continue
            return SSLInfo(cert_path=cert_path, key_path=key_path)

        return None

    async def renew_certificates(self) -> str:
        """续期所有Let's Encrypt证书(仅letsencrypt模式)"""
        if self.mode != SSLMode.LETSENCRYPT:
            return ""
        if not command_exists(self.certbot):
            raise CertificateError(f"{self.certbot} is not installed")

        output = await run_command([self.certbot, "renew", "--non-interactive"], timeout=1800)
        logger.info(f"[证书续期] 完成: {output}")
        return output

    async def remove_certificate(self, site_id: UUID) -> None:
        """删除站点证书目录, 目录不存在不算错误"""
        site_dir = self.site_cert_dir(site_id)
        try:
            shutil.rmtree(site_dir)
        except FileNotFoundError:
            return
        except OSError as e:
            raise CertificateError(f"failed to remove certificate directory: {e}")
        logger.info(f"[证书] 已删除: {site_dir}")
