"""
Workload Module Functions
The visit logger and its MongoDB in their own namespace: quota, StatefulSet,
Deployment, Service, Ingress, HPA, PodDisruptionBudget and NetworkPolicies
"""

import pulumi
import pulumi_kubernetes as k8s
from typing import Dict, List, Optional

MONGO_PORT = 27017
SERVICE_PORT = 80


def app_labels(app_name: str, component: str) -> Dict[str, str]:
    """Selector labels; `app` is what the ServiceMonitor and NetworkPolicies match on"""
    return {
        "app": app_name if component == "api" else f"{app_name}-{component}",
        "app.kubernetes.io/part-of": app_name,
        "app.kubernetes.io/component": component,
    }


def mongo_host(app_name: str, namespace: str) -> str:
    return f"{app_name}-mongodb.{namespace}.svc.cluster.local"


def create_namespace(name: str, namespace: str, quota: Dict[str, str], provider: k8s.Provider) -> Dict[str, any]:
    """
    Create the application namespace with a ResourceQuota

    Args:
        name: Resource name prefix
        namespace: Namespace name
        quota: ResourceQuota hard limits
        provider: Kubernetes provider

    Returns:
        Dict with namespace resources
    """
    ns = k8s.core.v1.Namespace(
        f"{name}-{namespace}-namespace",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=namespace,
            labels={"name": namespace, "managed-by": "pulumi"}
        ),
        opts=pulumi.ResourceOptions(provider=provider)
    )

    resource_quota = k8s.core.v1.ResourceQuota(
        f"{name}-{namespace}-quota",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=f"{namespace}-quota", namespace=ns.metadata.name),
        spec=k8s.core.v1.ResourceQuotaSpecArgs(hard=quota),
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "namespace": ns,
        "resource_quota": resource_quota,
        "namespace_name": ns.metadata.name
    }


def _restricted_security_context() -> k8s.core.v1.SecurityContextArgs:
    return k8s.core.v1.SecurityContextArgs(
        allow_privilege_escalation=False,
        read_only_root_filesystem=True,
        capabilities=k8s.core.v1.CapabilitiesArgs(drop=["ALL"])
    )


def create_mongodb(name: str, app_name: str, namespace: str, image: str, storage_size: str,
                   storage_class: str, database: str, credentials_secret: str,
                   provider: k8s.Provider, depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    Single-replica MongoDB StatefulSet with a headless Service

    The root user is initialised from the credentials Secret on first start
    of an empty volume.
    """
    labels = app_labels(app_name, "mongodb")
    opts = pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])

    service = k8s.core.v1.Service(
        f"{name}-{app_name}-mongodb-service",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=f"{app_name}-mongodb", namespace=namespace, labels=labels),
        spec=k8s.core.v1.ServiceSpecArgs(
            cluster_ip="None",
            selector=labels,
            ports=[k8s.core.v1.ServicePortArgs(name="mongodb", port=MONGO_PORT, target_port=MONGO_PORT)]
        ),
        opts=opts
    )

    credential_env = [
        k8s.core.v1.EnvVarArgs(
            name=env_name,
            value_from=k8s.core.v1.EnvVarSourceArgs(
                secret_key_ref=k8s.core.v1.SecretKeySelectorArgs(name=credentials_secret, key=secret_key)
            )
        )
        for env_name, secret_key in (
            ("MONGO_INITDB_ROOT_USERNAME", "MONGO_USERNAME"),
            ("MONGO_INITDB_ROOT_PASSWORD", "MONGO_PASSWORD"),
        )
    ]

    stateful_set = k8s.apps.v1.StatefulSet(
        f"{name}-{app_name}-mongodb",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=f"{app_name}-mongodb", namespace=namespace, labels=labels),
        spec=k8s.apps.v1.StatefulSetSpecArgs(
            service_name=f"{app_name}-mongodb",
            replicas=1,
            selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels),
            template=k8s.core.v1.PodTemplateSpecArgs(
                metadata=k8s.meta.v1.ObjectMetaArgs(labels=labels),
                spec=k8s.core.v1.PodSpecArgs(
                    security_context=k8s.core.v1.PodSecurityContextArgs(
                        run_as_user=999,
                        run_as_group=999,
                        fs_group=999,
                        run_as_non_root=True
                    ),
                    containers=[k8s.core.v1.ContainerArgs(
                        name="mongodb",
                        image=image,
                        ports=[k8s.core.v1.ContainerPortArgs(name="mongodb", container_port=MONGO_PORT)],
                        env=[
                            *credential_env,
                            k8s.core.v1.EnvVarArgs(name="MONGO_INITDB_DATABASE", value=database),
                        ],
                        resources=k8s.core.v1.ResourceRequirementsArgs(
                            requests={"cpu": "250m", "memory": "512Mi"},
                            limits={"cpu": "1", "memory": "1Gi"}
                        ),
                        liveness_probe=k8s.core.v1.ProbeArgs(
                            exec_=k8s.core.v1.ExecActionArgs(
                                command=["mongosh", "--quiet", "--eval", "db.adminCommand('ping')"]
                            ),
                            initial_delay_seconds=30,
                            period_seconds=20,
                            timeout_seconds=5
                        ),
                        readiness_probe=k8s.core.v1.ProbeArgs(
                            tcp_socket=k8s.core.v1.TCPSocketActionArgs(port=MONGO_PORT),
                            initial_delay_seconds=5,
                            period_seconds=10
                        ),
                        volume_mounts=[k8s.core.v1.VolumeMountArgs(name="data", mount_path="/data/db")],
                        security_context=k8s.core.v1.SecurityContextArgs(
                            allow_privilege_escalation=False,
                            capabilities=k8s.core.v1.CapabilitiesArgs(drop=["ALL"])
                        )
                    )]
                )
            ),
            volume_claim_templates=[k8s.core.v1.PersistentVolumeClaimArgs(
                metadata=k8s.meta.v1.ObjectMetaArgs(name="data"),
                spec=k8s.core.v1.PersistentVolumeClaimSpecArgs(
                    access_modes=["ReadWriteOnce"],
                    storage_class_name=storage_class,
                    resources=k8s.core.v1.VolumeResourceRequirementsArgs(requests={"storage": storage_size})
                )
            )]
        ),
        opts=opts
    )

    return {
        "service": service,
        "stateful_set": stateful_set,
        "host": mongo_host(app_name, namespace)
    }


def create_app_deployment(name: str, app_name: str, namespace: str, image: str, image_tag: str,
                          app_env: str, port: int, replicas: int, resources: Dict[str, Dict[str, str]],
                          database: str, credentials_secret: str,
                          provider: k8s.Provider, depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    Deployment and ClusterIP Service for the visit logger API

    Args:
        name: Resource name prefix
        app_name: Application name
        namespace: Application namespace
        image: Full image reference
        image_tag: Tag reported as the application version
        app_env: Environment name reported by GET /version
        port: Container port
        replicas: Initial replicas; the HPA owns the count afterwards
        resources: Container requests and limits
        database: MongoDB database name
        credentials_secret: Secret holding MONGO_USERNAME and MONGO_PASSWORD
        provider: Kubernetes provider
        depends_on: Prerequisites such as the Secret and MongoDB

    Returns:
        Dict with deployment and service resources
    """
    labels = app_labels(app_name, "api")
    opts = pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])

    health_probe = dict(
        http_get=k8s.core.v1.HTTPGetActionArgs(path="/health", port="http"),
        period_seconds=10,
        timeout_seconds=3,
        failure_threshold=3
    )

    deployment = k8s.apps.v1.Deployment(
        f"{name}-{app_name}-deployment",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=app_name, namespace=namespace, labels=labels),
        spec=k8s.apps.v1.DeploymentSpecArgs(
            replicas=replicas,
            selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels),
            strategy=k8s.apps.v1.DeploymentStrategyArgs(
                type="RollingUpdate",
                rolling_update=k8s.apps.v1.RollingUpdateDeploymentArgs(max_unavailable=0, max_surge=1)
            ),
            template=k8s.core.v1.PodTemplateSpecArgs(
                metadata=k8s.meta.v1.ObjectMetaArgs(labels={**labels, "version": image_tag}),
                spec=k8s.core.v1.PodSpecArgs(
                    security_context=k8s.core.v1.PodSecurityContextArgs(
                        run_as_non_root=True,
                        run_as_user=65532,
                        seccomp_profile=k8s.core.v1.SeccompProfileArgs(type="RuntimeDefault")
                    ),
                    topology_spread_constraints=[k8s.core.v1.TopologySpreadConstraintArgs(
                        max_skew=1,
                        topology_key="topology.kubernetes.io/zone",
                        when_unsatisfiable="ScheduleAnyway",
                        label_selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels)
                    )],
                    containers=[k8s.core.v1.ContainerArgs(
                        name=app_name,
                        image=image,
                        ports=[k8s.core.v1.ContainerPortArgs(name="http", container_port=port)],
                        env=[
                            k8s.core.v1.EnvVarArgs(name="PORT", value=str(port)),
                            k8s.core.v1.EnvVarArgs(name="APP_ENV", value=app_env),
                            k8s.core.v1.EnvVarArgs(name="APP_VERSION", value=image_tag),
                            k8s.core.v1.EnvVarArgs(name="MONGO_HOST", value=mongo_host(app_name, namespace)),
                            k8s.core.v1.EnvVarArgs(name="MONGO_PORT", value=str(MONGO_PORT)),
                            k8s.core.v1.EnvVarArgs(name="MONGO_DATABASE", value=database),
                            k8s.core.v1.EnvVarArgs(name="MONGO_AUTH_SOURCE", value="admin"),
                        ],
                        env_from=[k8s.core.v1.EnvFromSourceArgs(
                            secret_ref=k8s.core.v1.SecretEnvSourceArgs(name=credentials_secret)
                        )],
                        resources=k8s.core.v1.ResourceRequirementsArgs(
                            requests=resources["requests"],
                            limits=resources["limits"]
                        ),
                        liveness_probe=k8s.core.v1.ProbeArgs(initial_delay_seconds=15, **health_probe),
                        readiness_probe=k8s.core.v1.ProbeArgs(initial_delay_seconds=5, **health_probe),
                        security_context=_restricted_security_context()
                    )],
                    termination_grace_period_seconds=30
                )
            )
        ),
        # Replica count belongs to the HPA after the first apply
        opts=pulumi.ResourceOptions.merge(opts, pulumi.ResourceOptions(ignore_changes=["spec.replicas"]))
    )

    service = k8s.core.v1.Service(
        f"{name}-{app_name}-service",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=app_name, namespace=namespace, labels=labels),
        spec=k8s.core.v1.ServiceSpecArgs(
            type="ClusterIP",
            selector=labels,
            ports=[k8s.core.v1.ServicePortArgs(name="http", port=SERVICE_PORT, target_port="http")]
        ),
        opts=opts
    )

    return {
        "deployment": deployment,
        "service": service,
        "deployment_name": app_name
    }


def create_ingress(name: str, app_name: str, namespace: str, ingress_class: str, host: Optional[str],
                   provider: k8s.Provider, depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """Expose the API service through the ingress controller"""
    ingress = k8s.networking.v1.Ingress(
        f"{name}-{app_name}-ingress",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=app_name,
            namespace=namespace,
            labels=app_labels(app_name, "api"),
            annotations={"traefik.ingress.kubernetes.io/router.entrypoints": "web,websecure"}
        ),
        spec=k8s.networking.v1.IngressSpecArgs(
            ingress_class_name=ingress_class,
            rules=[k8s.networking.v1.IngressRuleArgs(
                host=host or None,
                http=k8s.networking.v1.HTTPIngressRuleValueArgs(
                    paths=[k8s.networking.v1.HTTPIngressPathArgs(
                        path="/",
                        path_type="Prefix",
                        backend=k8s.networking.v1.IngressBackendArgs(
                            service=k8s.networking.v1.IngressServiceBackendArgs(
                                name=app_name,
                                port=k8s.networking.v1.ServiceBackendPortArgs(name="http")
                            )
                        )
                    )]
                )
            )]
        ),
        opts=pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])
    )

    return {"ingress": ingress}


def create_hpa(name: str, app_name: str, namespace: str, min_replicas: int, max_replicas: int,
               cpu_target: int, provider: k8s.Provider, depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    HorizontalPodAutoscaler on CPU utilisation

    Scale-up is immediate; scale-down waits five minutes and removes at most
    one pod per minute.
    """
    hpa = k8s.autoscaling.v2.HorizontalPodAutoscaler(
        f"{name}-{app_name}-hpa",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=app_name, namespace=namespace),
        spec=k8s.autoscaling.v2.HorizontalPodAutoscalerSpecArgs(
            scale_target_ref=k8s.autoscaling.v2.CrossVersionObjectReferenceArgs(
                api_version="apps/v1",
                kind="Deployment",
                name=app_name
            ),
            min_replicas=min_replicas,
            max_replicas=max_replicas,
            metrics=[k8s.autoscaling.v2.MetricSpecArgs(
                type="Resource",
                resource=k8s.autoscaling.v2.ResourceMetricSourceArgs(
                    name="cpu",
                    target=k8s.autoscaling.v2.MetricTargetArgs(
                        type="Utilization",
                        average_utilization=cpu_target
                    )
                )
            )],
            behavior=k8s.autoscaling.v2.HorizontalPodAutoscalerBehaviorArgs(
                scale_up=k8s.autoscaling.v2.HPAScalingRulesArgs(
                    stabilization_window_seconds=0,
                    policies=[k8s.autoscaling.v2.HPAScalingPolicyArgs(type="Percent", value=100, period_seconds=30)]
                ),
                scale_down=k8s.autoscaling.v2.HPAScalingRulesArgs(
                    stabilization_window_seconds=300,
                    policies=[k8s.autoscaling.v2.HPAScalingPolicyArgs(type="Pods", value=1, period_seconds=60)]
                )
            )
        ),
        opts=pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])
    )

    return {"hpa": hpa}


def create_pod_disruption_budget(name: str, app_name: str, namespace: str, provider: k8s.Provider,
                                 depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """Keep one API pod running through node drains"""
    pdb = k8s.policy.v1.PodDisruptionBudget(
        f"{name}-{app_name}-pdb",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=app_name, namespace=namespace),
        spec=k8s.policy.v1.PodDisruptionBudgetSpecArgs(
            min_available=1,
            selector=k8s.meta.v1.LabelSelectorArgs(match_labels=app_labels(app_name, "api"))
        ),
        opts=pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])
    )

    return {"pdb": pdb}


def _from_namespaces(namespaces: List[str]) -> List[k8s.networking.v1.NetworkPolicyPeerArgs]:
    return [
        k8s.networking.v1.NetworkPolicyPeerArgs(
            namespace_selector=k8s.meta.v1.LabelSelectorArgs(
                match_labels={"kubernetes.io/metadata.name": ns}
            )
        )
        for ns in namespaces
    ]


def create_network_policies(name: str, app_name: str, namespace: str, app_port: int,
                            allowed_namespaces: List[str], provider: k8s.Provider,
                            depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    Default-deny ingress for the namespace with two exceptions

    - API pods accept traffic from the ingress controller and monitoring namespaces
    - MongoDB accepts traffic from API pods only

    Args:
        name: Resource name prefix
        app_name: Application name
        namespace: Application namespace
        app_port: API container port
        allowed_namespaces: Namespaces allowed to reach the API
        provider: Kubernetes provider
        depends_on: Namespace

    Returns:
        Dict with the policies
    """
    opts = pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])
    policies = {}

    # An empty `from` admits every source, so no namespaces means no rule
    api_rules = []
    if allowed_namespaces:
        api_rules.append(k8s.networking.v1.NetworkPolicyIngressRuleArgs(
            _from=_from_namespaces(allowed_namespaces),
            ports=[k8s.networking.v1.NetworkPolicyPortArgs(port=app_port, protocol="TCP")]
        ))

    policies["default_deny"] = k8s.networking.v1.NetworkPolicy(
        f"{name}-{app_name}-default-deny",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="default-deny-ingress", namespace=namespace),
        spec=k8s.networking.v1.NetworkPolicySpecArgs(
            pod_selector=k8s.meta.v1.LabelSelectorArgs(),
            policy_types=["Ingress"]
        ),
        opts=opts
    )

    policies["api_ingress"] = k8s.networking.v1.NetworkPolicy(
        f"{name}-{app_name}-allow-api",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=f"{app_name}-allow-ingress", namespace=namespace),
        spec=k8s.networking.v1.NetworkPolicySpecArgs(
            pod_selector=k8s.meta.v1.LabelSelectorArgs(match_labels=app_labels(app_name, "api")),
            policy_types=["Ingress"],
            ingress=api_rules
        ),
        opts=opts
    )

    policies["mongodb_ingress"] = k8s.networking.v1.NetworkPolicy(
        f"{name}-{app_name}-allow-mongodb",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=f"{app_name}-mongodb-allow-api", namespace=namespace),
        spec=k8s.networking.v1.NetworkPolicySpecArgs(
            pod_selector=k8s.meta.v1.LabelSelectorArgs(match_labels=app_labels(app_name, "mongodb")),
            policy_types=["Ingress"],
            ingress=[k8s.networking.v1.NetworkPolicyIngressRuleArgs(
                _from=[k8s.networking.v1.NetworkPolicyPeerArgs(
                    pod_selector=k8s.meta.v1.LabelSelectorArgs(match_labels=app_labels(app_name, "api"))
                )],
                ports=[k8s.networking.v1.NetworkPolicyPortArgs(port=MONGO_PORT, protocol="TCP")]
            )]
        ),
        opts=opts
    )

    return {"policies": policies}


def create_workload_resources(cluster_name: str, app_name: str, namespace: str, namespace_resource,
                              image: str, image_tag: str, app_env: str, port: int,
                              replicas: int, hpa_min_replicas: int, hpa_max_replicas: int,
                              hpa_cpu_target: int, resources: Dict[str, Dict[str, str]],
                              mongo_image: str, mongo_storage_size: str, mongo_database: str,
                              storage_class: str, credentials_secret: str,
                              provider: k8s.Provider,
                              ingress_class: Optional[str] = None,
                              ingress_host: Optional[str] = None,
                              allowed_namespaces: List[str] = None,
                              depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    Deploy the visit logger and MongoDB into an existing namespace

    Returns:
        Dict with workload outputs and resources
    """
    prerequisites = [namespace_resource, *(depends_on or [])]

    mongodb_result = create_mongodb(
        cluster_name, app_name, namespace, mongo_image, mongo_storage_size, storage_class,
        mongo_database, credentials_secret, provider, prerequisites
    )

    app_result = create_app_deployment(
        cluster_name, app_name, namespace, image, image_tag, app_env, port, replicas, resources,
        mongo_database, credentials_secret, provider,
        depends_on=[*prerequisites, mongodb_result["service"]]
    )
    after_app = [app_result["deployment"]]

    ingress_result = None
    if ingress_class:
        ingress_result = create_ingress(
            cluster_name, app_name, namespace, ingress_class, ingress_host, provider, [app_result["service"]]
        )

    hpa_result = create_hpa(
        cluster_name, app_name, namespace, hpa_min_replicas, hpa_max_replicas, hpa_cpu_target, provider, after_app
    )
    pdb_result = create_pod_disruption_budget(cluster_name, app_name, namespace, provider, after_app)
    policies_result = create_network_policies(
        cluster_name, app_name, namespace, port, allowed_namespaces or [], provider, [namespace_resource]
    )

    return {
        "deployment_name": app_result["deployment_name"],
        "service_name": app_name,
        "mongodb_host": mongodb_result["host"],
        "_mongodb": mongodb_result["stateful_set"],
        "_deployment": app_result["deployment"],
        "_service": app_result["service"],
        "_ingress": ingress_result["ingress"] if ingress_result else None,
        "_hpa": hpa_result["hpa"],
        "_pdb": pdb_result["pdb"],
        "_network_policies": policies_result["policies"]
    }
