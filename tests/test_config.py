"""
Unit tests for stack configuration
"""

import unittest
from unittest.mock import Mock, patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config


def _stack_config(values):
    """Mock pulumi.Config returning None for unset keys like the real one"""
    stack = Mock()
    for getter in ("get", "get_int", "get_bool", "get_float", "get_object"):
        getattr(stack, getter).side_effect = values.get
    stack.require_secret.side_effect = lambda key: values.get(key, "secret")
    return stack


def load_config(**values):
    aws_config = _stack_config({"region": values.pop("region", None)})
    stack_config = _stack_config(values)
    with patch('config.pulumi') as mock_pulumi:
        mock_pulumi.Config.side_effect = lambda name=None: aws_config if name == "aws" else stack_config
        return Config()


class TestConfig(unittest.TestCase):
    """Stack configuration defaults and validation"""

    def test_defaults(self):
        config = load_config()

        self.assertEqual(config.aws_region, "eu-west-1")
        self.assertEqual(config.cluster_name, "visit-logger")
        self.assertEqual(config.delivery_mode, "pulumi")
        self.assertEqual(config.app_port, 3000)
        self.assertEqual(config.capacity_type, "ON_DEMAND")
        self.assertEqual(config.app_image, "ghcr.io/visit-logger/visit-logger:latest")
        self.assertEqual(config.secrets_manager_secret_name, "visit-logger/mongodb")
        self.assertFalse(config.enable_state_storage)
        self.assertIn("traefik", config.enabled_addons)
        self.assertEqual(config.existing_cluster_role_arn, "")
        self.assertEqual(config.existing_node_role_arn, "")

    def test_overrides(self):
        config = load_config(
            region="us-east-1",
            cluster_name="prod",
            image_tag="1.2.3",
            enable_spot_instances=True,
            tags={"Team": "platform"}
        )

        self.assertEqual(config.aws_region, "us-east-1")
        self.assertEqual(config.app_image, "ghcr.io/visit-logger/visit-logger:1.2.3")
        self.assertEqual(config.capacity_type, "SPOT")
        self.assertEqual(config.secrets_manager_secret_name, "prod/mongodb")
        self.assertEqual(config.common_tags["Team"], "platform")
        self.assertEqual(config.common_tags["ManagedBy"], "pulumi")

    def test_flags_can_be_turned_off(self):
        config = load_config(enable_traefik=False, enable_monitoring=False)

        self.assertFalse(config.enable_traefik)
        self.assertFalse(config.enable_monitoring)
        self.assertNotIn("traefik", config.enabled_addons)
        self.assertNotIn("kube-prometheus-stack", config.enabled_addons)

    def test_invalid_node_sizes(self):
        with self.assertRaises(ValueError):
            load_config(node_min_size=3, node_desired_size=2, node_max_size=4)
        with self.assertRaises(ValueError):
            load_config(node_desired_size=5, node_max_size=4)

    def test_invalid_hpa(self):
        with self.assertRaises(ValueError):
            load_config(hpa_min_replicas=5, hpa_max_replicas=3)
        with self.assertRaises(ValueError):
            load_config(hpa_cpu_target=150)

    def test_unknown_delivery_mode(self):
        with self.assertRaises(ValueError):
            load_config(delivery_mode="flux")

    def test_argocd_mode_needs_repository(self):
        with self.assertRaises(ValueError):
            load_config(delivery_mode="argocd")

        config = load_config(delivery_mode="argocd", gitops_repo_url="https://github.com/example/deploy.git")
        self.assertEqual(config.delivery_mode, "argocd")

    def test_requires_two_private_subnets(self):
        with self.assertRaises(ValueError):
            load_config(private_subnet_cidrs=["10.0.101.0/24"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
