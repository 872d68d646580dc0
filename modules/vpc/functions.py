"""
VPC Module Functions
Network for the EKS cluster: public subnets for load balancers and the NAT
gateway, private subnets for worker nodes
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


def create_vpc(name: str, cidr: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create VPC with DNS settings

    Args:
        name: VPC name
        cidr: VPC CIDR block
        tags: Additional tags

    Returns:
        Dict with vpc resource and outputs
    """
    tags = tags or {}

    vpc = aws.ec2.Vpc(
        f"{name}-vpc",
        cidr_block=cidr,
        enable_dns_hostnames=True,
        enable_dns_support=True,
        tags={
            **tags,
            "Name": f"{name}-vpc",
            f"kubernetes.io/cluster/{name}": "shared",
            "Module": "vpc"
        }
    )

    return {
        "vpc": vpc,
        "vpc_id": vpc.id,
        "vpc_cidr_block": vpc.cidr_block
    }


def create_internet_gateway(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}

    igw = aws.ec2.InternetGateway(
        f"{name}-igw",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-igw",
            "Module": "vpc"
        }
    )

    return {
        "igw": igw,
        "igw_id": igw.id
    }


def subnet_tags(cluster_name: str, tier: str) -> Dict[str, str]:
    """
    Discovery tags for a subnet tier

    The AWS load balancer integration looks up public subnets by
    kubernetes.io/role/elb and private ones by kubernetes.io/role/internal-elb.
    """
    role_tag = "kubernetes.io/role/elb" if tier == "public" else "kubernetes.io/role/internal-elb"
    return {
        "Type": tier,
        f"kubernetes.io/cluster/{cluster_name}": "shared",
        role_tag: "1",
    }


def create_subnets(name: str, tier: str, vpc_id: pulumi.Output[str], subnet_cidrs: List[str],
                   availability_zones: List[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one subnet per CIDR, spread across availability zones

    Args:
        name: Resource name prefix
        tier: "public" or "private"
        vpc_id: VPC ID
        subnet_cidrs: List of CIDR blocks for subnets
        availability_zones: List of availability zones
        tags: Additional tags

    Returns:
        Dict with subnet resources and outputs
    """
    tags = tags or {}

    subnets = []
    for i, cidr in enumerate(subnet_cidrs):
        subnet = aws.ec2.Subnet(
            f"{name}-{tier}-subnet-{i+1}",
            vpc_id=vpc_id,
            cidr_block=cidr,
            availability_zone=availability_zones[i % len(availability_zones)],
            map_public_ip_on_launch=tier == "public",
            tags={
                **tags,
                **subnet_tags(name, tier),
                "Name": f"{name}-{tier}-subnet-{i+1}",
                "Module": "vpc"
            }
        )
        subnets.append(subnet)

    return {
        "subnets": subnets,
        "subnet_ids": [subnet.id for subnet in subnets],
    }


def create_nat_gateway(name: str, public_subnet_id: pulumi.Output[str], igw, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Single NAT gateway giving private subnets outbound access

    Args:
        name: Resource name prefix
        public_subnet_id: Subnet the gateway lives in
        igw: Internet gateway the NAT depends on
        tags: Additional tags
    """
    tags = tags or {}

    eip = aws.ec2.Eip(
        f"{name}-nat-eip",
        domain="vpc",
        tags={
            **tags,
            "Name": f"{name}-nat-eip",
            "Module": "vpc"
        }
    )

    nat_gateway = aws.ec2.NatGateway(
        f"{name}-nat",
        allocation_id=eip.id,
        subnet_id=public_subnet_id,
        tags={
            **tags,
            "Name": f"{name}-nat",
            "Module": "vpc"
        },
        opts=pulumi.ResourceOptions(depends_on=[igw])
    )

    return {
        "eip": eip,
        "nat_gateway": nat_gateway,
        "nat_gateway_id": nat_gateway.id
    }


def create_route_table(name: str, tier: str, vpc_id: pulumi.Output[str], subnet_ids: List[pulumi.Output[str]],
                       gateway_id: pulumi.Output[str] = None, nat_gateway_id: pulumi.Output[str] = None,
                       tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create a route table with a default route and associate subnets

    Args:
        name: Resource name prefix
        tier: "public" or "private"
        vpc_id: VPC ID
        subnet_ids: List of subnet IDs to associate
        gateway_id: Internet gateway for public tables
        nat_gateway_id: NAT gateway for private tables
        tags: Additional tags

    Returns:
        Dict with route table resources and outputs
    """
    tags = tags or {}

    route_table = aws.ec2.RouteTable(
        f"{name}-{tier}-rt",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-{tier}-rt",
            "Module": "vpc"
        }
    )

    route = aws.ec2.Route(
        f"{name}-{tier}-route",
        route_table_id=route_table.id,
        destination_cidr_block="0.0.0.0/0",
        gateway_id=gateway_id,
        nat_gateway_id=nat_gateway_id
    )

    associations = []
    for i, subnet_id in enumerate(subnet_ids):
        association = aws.ec2.RouteTableAssociation(
            f"{name}-{tier}-rta-{i+1}",
            subnet_id=subnet_id,
            route_table_id=route_table.id
        )
        associations.append(association)

    return {
        "route_table": route_table,
        "route": route,
        "associations": associations,
        "route_table_id": route_table.id
    }


def create_cluster_security_group(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-cluster-sg",
        name_prefix=f"{name}-cluster-",
        vpc_id=vpc_id,
        description="EKS control plane",
        tags={
            **tags,
            "Name": f"{name}-cluster-sg",
            "Module": "vpc"
        }
    )

    egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-egress",
        type="egress",
        from_port=0,
        to_port=0,
        protocol="-1",
        cidr_blocks=["0.0.0.0/0"],
        security_group_id=security_group.id
    )

    return {
        "security_group": security_group,
        "egress_rule": egress_rule,
        "security_group_id": security_group.id
    }


def create_vpc_resources(cluster_name: str, vpc_cidr: str, public_subnet_cidrs: List[str],
                         private_subnet_cidrs: List[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete VPC infrastructure for EKS

    Args:
        cluster_name: EKS cluster name
        vpc_cidr: VPC CIDR block
        public_subnet_cidrs: List of public subnet CIDR blocks
        private_subnet_cidrs: List of private subnet CIDR blocks
        tags: Additional tags for all resources

    Returns:
        Dict with all VPC resources and outputs
    """
    tags = tags or {}

    azs = aws.get_availability_zones(state="available")

    vpc_result = create_vpc(cluster_name, vpc_cidr, tags)
    igw_result = create_internet_gateway(cluster_name, vpc_result["vpc_id"], tags)

    public_result = create_subnets(
        cluster_name, "public", vpc_result["vpc_id"], public_subnet_cidrs, azs.names, tags
    )
    private_result = create_subnets(
        cluster_name, "private", vpc_result["vpc_id"], private_subnet_cidrs, azs.names, tags
    )

    nat_result = create_nat_gateway(cluster_name, public_result["subnet_ids"][0], igw_result["igw"], tags)

    public_rt_result = create_route_table(
        cluster_name, "public", vpc_result["vpc_id"], public_result["subnet_ids"],
        gateway_id=igw_result["igw_id"], tags=tags
    )
    private_rt_result = create_route_table(
        cluster_name, "private", vpc_result["vpc_id"], private_result["subnet_ids"],
        nat_gateway_id=nat_result["nat_gateway_id"], tags=tags
    )

    cluster_sg_result = create_cluster_security_group(cluster_name, vpc_result["vpc_id"], tags)

    return {
        "vpc_id": vpc_result["vpc_id"],
        "vpc_cidr_block": vpc_result["vpc_cidr_block"],
        "public_subnet_ids": public_result["subnet_ids"],
        "private_subnet_ids": private_result["subnet_ids"],
        "availability_zones": azs.names,
        "nat_gateway_id": nat_result["nat_gateway_id"],
        "cluster_security_group_id": cluster_sg_result["security_group_id"],
        # Keep references to all resources for dependencies
        "_vpc": vpc_result["vpc"],
        "_igw": igw_result["igw"],
        "_nat_gateway": nat_result["nat_gateway"],
        "_public_subnets": public_result["subnets"],
        "_private_subnets": private_result["subnets"],
        "_public_route_table": public_rt_result["route_table"],
        "_private_route_table": private_rt_result["route_table"],
        "_cluster_sg": cluster_sg_result["security_group"]
    }
