"""Setup for the lti_auth Django application."""

import os
import re

from setuptools import find_packages, setup

# "package-name>=x.y" -> ("package-name", ">=x.y")
REQUIREMENT_RE = re.compile(r"([a-zA-Z0-9-_.\[\]]+)([<>=!~][^#\s]+)?")


def is_requirement(line):
    """
    Return True for package lines, False for blank lines, comments and pip options.
    """
    line = line.strip()
    return bool(line) and not line.startswith(('-r', '#', '-e', 'git+', '-c'))


def load_requirements(*requirements_paths):
    """
    Load the requirements of .in files, pinned by the constraint files they
    include with -c.
    """
    requirements = {}
    constraint_files = []
    for path in requirements_paths:
        with open(path, encoding='utf-8') as reqs:
            for line in reqs:
                if line.startswith('-c') and not line.startswith('-c http'):
                    constraint_files.append(os.path.join(os.path.dirname(path), line[2:].split('#')[0].strip()))
                elif is_requirement(line):
                    package, version = REQUIREMENT_RE.match(line.strip()).groups()
                    requirements[package] = version

    for constraint_file in constraint_files:
        with open(constraint_file, encoding='utf-8') as constraints:
            for line in constraints:
                if not is_requirement(line):
                    continue
                package, version = REQUIREMENT_RE.match(line.strip()).groups()
                for name in requirements:
                    # constraints name the distribution without its extras
                    if name.split('[')[0].lower() == package.lower():
                        requirements[name] = version

    return [f'{package}{version or ""}' for package, version in sorted(requirements.items())]


def get_version(file_path):
    """
    Extract the version string from the file at the given relative path.
    """
    filename = os.path.join(os.path.dirname(__file__), file_path)
    with open(filename, encoding='utf-8') as opened_file:
        version_match = re.search(r"(?m)^__version__ = ['\"]([^'\"]+)['\"]", opened_file.read())
    if version_match:
        return version_match.group(1)
    raise RuntimeError('Unable to find version string.')


with open('README.rst', encoding='utf-8') as readme:
    long_description = readme.read()

VERSION = get_version("lti_auth/__init__.py")


setup(
    name='lti-auth',
    version=VERSION,
    author='Open edX project',
    author_email='oscm@edx.org',
    description='Authentication, signing and claims translation for LTI 1.0, 1.1, 2.0 and 1.3 messages.',
    long_description=long_description,
    long_description_content_type='text/x-rst',
    packages=find_packages(exclude=['requirements']),
    include_package_data=True,
    install_requires=load_requirements('requirements/base.in'),
    extras_require={
        'test': load_requirements('requirements/test.in'),
    },
    keywords='lti oauth jwt lms tool platform',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Framework :: Django',
        'Framework :: Django :: 4.2',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: GNU Affero General Public License v3',
        'Natural Language :: English',
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.11",
    ]
)
