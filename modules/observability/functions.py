"""
Observability Module Functions
kube-prometheus-stack, a ServiceMonitor scraping the visit logger and the
PrometheusRule alerting on it
"""

import pulumi
import pulumi_kubernetes as k8s
from typing import Dict, List

KUBE_PROMETHEUS_STACK_VERSION = "66.3.1"
MONITORING_NAMESPACE = "monitoring"


def alert_rules(app_name: str, namespace: str, error_ratio: float = 0.05,
                latency_p95_seconds: float = 0.5, restart_count: int = 3) -> List[Dict[str, any]]:
    """
    Alerting rules for the visit logger

    Args:
        app_name: Application name (service, container, HPA and StatefulSet prefix)
        namespace: Application namespace
        error_ratio: Fraction of 5xx responses that pages
        latency_p95_seconds: p95 latency threshold
        restart_count: Container restarts within 15 minutes that pages

    Returns:
        List of Prometheus rule definitions
    """
    selector = f'namespace="{namespace}"'
    requests = "visit_logger_http_requests_total"

    return [
        {
            "alert": "VisitLoggerDown",
            "expr": f'absent(up{{{selector},service="{app_name}"}} == 1)',
            "for": "2m",
            "labels": {"severity": "critical"},
            "annotations": {
                "summary": "Visit logger has no healthy scrape targets",
                "description": f"No {app_name} pod in {namespace} has been scraped successfully for 2 minutes.",
            },
        },
        {
            "alert": "VisitLoggerHighErrorRate",
            "expr": (
                f'sum(rate({requests}{{{selector},status=~"5.."}}[5m]))'
                f' / sum(rate({requests}{{{selector}}}[5m])) > {error_ratio}'
            ),
            "for": "5m",
            "labels": {"severity": "warning"},
            "annotations": {
                "summary": "Visit logger is answering with server errors",
                "description": f"More than {error_ratio:.0%} of requests returned 5xx over the last 5 minutes.",
            },
        },
        {
            "alert": "VisitLoggerHighLatency",
            "expr": (
                "histogram_quantile(0.95, sum by (le) "
                f"(rate(visit_logger_http_request_duration_seconds_bucket{{{selector}}}[5m])))"
                f" > {latency_p95_seconds}"
            ),
            "for": "10m",
            "labels": {"severity": "warning"},
            "annotations": {
                "summary": "Visit logger p95 latency is high",
                "description": f"p95 request latency has been above {latency_p95_seconds}s for 10 minutes.",
            },
        },
        {
            "alert": "VisitLoggerPodRestarting",
            "expr": (
                f'increase(kube_pod_container_status_restarts_total{{{selector},container="{app_name}"}}[15m])'
                f" > {restart_count}"
            ),
            "labels": {"severity": "warning"},
            "annotations": {
                "summary": "Visit logger container is restarting",
                "description": "Pod {{ $labels.pod }} restarted more than " f"{restart_count} times in 15 minutes.",
            },
        },
        {
            "alert": "VisitLoggerAtMaxReplicas",
            "expr": (
                f'kube_horizontalpodautoscaler_status_current_replicas{{{selector},horizontalpodautoscaler="{app_name}"}}'
                f' >= kube_horizontalpodautoscaler_spec_max_replicas{{{selector},horizontalpodautoscaler="{app_name}"}}'
            ),
            "for": "15m",
            "labels": {"severity": "warning"},
            "annotations": {
                "summary": "Visit logger autoscaler is pinned at max replicas",
                "description": "The HPA has been at its replica ceiling for 15 minutes; raise the limit or investigate load.",
            },
        },
        {
            "alert": "VisitLoggerMongoDBDown",
            "expr": (
                f'kube_statefulset_status_replicas_ready{{{selector},statefulset="{app_name}-mongodb"}} < 1'
                f' or increase(visit_logger_visits_recorded_total{{{selector},status="error"}}[5m]) > 0'
            ),
            "for": "5m",
            "labels": {"severity": "critical"},
            "annotations": {
                "summary": "Visits are not being persisted",
                "description": "MongoDB has no ready replica or the service failed to record visits.",
            },
        },
    ]


def prometheus_rule_spec(app_name: str, namespace: str, **thresholds) -> Dict[str, any]:
    return {
        "groups": [{
            "name": f"{app_name}.rules",
            "rules": alert_rules(app_name, namespace, **thresholds),
        }]
    }


def service_monitor_spec(app_name: str, namespace: str, port_name: str = "http") -> Dict[str, any]:
    """ServiceMonitor selecting the application Service"""
    return {
        "selector": {"matchLabels": {"app": app_name}},
        "namespaceSelector": {"matchNames": [namespace]},
        "endpoints": [{
            "port": port_name,
            "path": "/metrics",
            "interval": "30s",
            "scrapeTimeout": "10s",
        }],
    }


def deploy_kube_prometheus_stack(name: str, provider: k8s.Provider) -> Dict[str, any]:
    """
    Deploy kube-prometheus-stack (Prometheus Operator, Prometheus, Alertmanager, Grafana)

    Rule and ServiceMonitor selectors are opened up so resources without the
    chart's release label are picked up.
    """
    release = k8s.helm.v3.Release(
        f"{name}-kube-prometheus-stack",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://prometheus-community.github.io/helm-charts"
        ),
        chart="kube-prometheus-stack",
        version=KUBE_PROMETHEUS_STACK_VERSION,
        name="kube-prometheus-stack",
        namespace=MONITORING_NAMESPACE,
        create_namespace=True,
        values={
            "prometheus": {
                "prometheusSpec": {
                    "serviceMonitorSelectorNilUsesHelmValues": False,
                    "ruleSelectorNilUsesHelmValues": False,
                    "retention": "7d",
                    "storageSpec": {
                        "volumeClaimTemplate": {
                            "spec": {
                                "storageClassName": "gp3",
                                "accessModes": ["ReadWriteOnce"],
                                "resources": {"requests": {"storage": "20Gi"}},
                            }
                        }
                    },
                }
            },
            "grafana": {"defaultDashboardsEnabled": True},
            "alertmanager": {"enabled": True},
        },
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "release": release,
        "namespace": MONITORING_NAMESPACE,
        "status": "✅ Enabled"
    }


def create_observability_resources(cluster_name: str, app_name: str, namespace: str,
                                   provider: k8s.Provider,
                                   error_ratio: float = 0.05,
                                   latency_p95_seconds: float = 0.5,
                                   restart_count: int = 3,
                                   depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    Create monitoring stack and the application's scrape and alert configuration

    Args:
        cluster_name: EKS cluster name
        app_name: Application name
        namespace: Application namespace
        provider: Kubernetes provider
        error_ratio: 5xx ratio alert threshold
        latency_p95_seconds: p95 latency alert threshold
        restart_count: Restart alert threshold
        depends_on: Namespace and other prerequisites

    Returns:
        Dict with monitoring resources
    """
    stack_result = deploy_kube_prometheus_stack(cluster_name, provider)
    crd_opts = pulumi.ResourceOptions(
        provider=provider,
        depends_on=[stack_result["release"], *(depends_on or [])]
    )

    service_monitor = k8s.apiextensions.CustomResource(
        f"{cluster_name}-{app_name}-service-monitor",
        api_version="monitoring.coreos.com/v1",
        kind="ServiceMonitor",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=app_name,
            namespace=namespace,
            labels={"app": app_name, "release": "kube-prometheus-stack"}
        ),
        spec=service_monitor_spec(app_name, namespace),
        opts=crd_opts
    )

    prometheus_rule = k8s.apiextensions.CustomResource(
        f"{cluster_name}-{app_name}-prometheus-rule",
        api_version="monitoring.coreos.com/v1",
        kind="PrometheusRule",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=f"{app_name}-alerts",
            namespace=namespace,
            labels={"app": app_name, "release": "kube-prometheus-stack"}
        ),
        spec=prometheus_rule_spec(
            app_name,
            namespace,
            error_ratio=error_ratio,
            latency_p95_seconds=latency_p95_seconds,
            restart_count=restart_count
        ),
        opts=crd_opts
    )

    return {
        "monitoring_namespace": stack_result["namespace"],
        "status": stack_result["status"],
        "_release": stack_result["release"],
        "_service_monitor": service_monitor,
        "_prometheus_rule": prometheus_rule
    }
