from typing import Optional

import boto3

from docker_image_deployment.logging_config import get_logger

logger = get_logger(__name__)


class NoDomainCertificateError(Exception):
    pass


def get_certificate_arn_from_acm(domain_name: str, region: Optional[str] = None) -> str:
    """Return the ARN of an issued ACM certificate for ``domain_name``.

    Raises NoDomainCertificateError when ACM has none.
    """
    acm = boto3.client("acm", region_name=region)
    kwargs = {"CertificateStatuses": ["ISSUED"]}

    while True:
        response = acm.list_certificates(**kwargs)
        result = [
            cert
            for cert in response["CertificateSummaryList"]
            if cert["DomainName"] == domain_name
        ]
        if result:
            return result[0]["CertificateArn"]

        next_token = response.get("NextToken")
        if not next_token:
            raise NoDomainCertificateError(domain_name)
        kwargs["NextToken"] = next_token


def resolve_certificate_arn(
    domain_name: str,
    certificate_arn: Optional[str] = None,
    lookup: bool = False,
    region: Optional[str] = None,
) -> Optional[str]:
    """Pick the certificate the HTTPS listener should use.

    An explicit ARN wins. Otherwise ACM is searched when ``lookup`` is set.
    ``None`` means the stack requests a new DNS validated certificate.
    """
    if certificate_arn:
        return certificate_arn
    if not lookup:
        return None

    try:
        certificate_arn = get_certificate_arn_from_acm(domain_name, region=region)
    except NoDomainCertificateError:
        logger.warning(
            "no issued certificate for %s in ACM, a new one will be requested", domain_name
        )
        return None

    logger.info("using existing certificate %s for %s", certificate_arn, domain_name)
    return certificate_arn
