"""Salesforce 远程接口模块"""

from .client import RestClient
from .sobject import SFID, SObject

__all__ = ["RestClient", "SFID", "SObject"]
